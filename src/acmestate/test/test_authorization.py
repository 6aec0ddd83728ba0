import copy

from acme import messages
from testtools import TestCase
from testtools.matchers import (
    Contains, Equals, HasLength, Is, MatchesStructure, raises)

from acmestate.authorization import Authorization
from acmestate.errors import (
    MissingEndpoint, StateError, UnexpectedTransition,
    ValidationMismatchError)
from acmestate.messages import STATUS_EXPIRED
from acmestate.order import Order
from acmestate.test.doubles import RSA_KEY, registered
from acmestate.test.matchers import has_status
from acmestate.testing import FakeACMEServer


class AuthorizationTests(TestCase):
    """
    Tests for `acmestate.authorization.Authorization`.
    """
    def setUp(self):
        super(AuthorizationTests, self).setUp()
        self.server, self.session = registered()
        order = Order.create(self.session, [u'example.org'])
        [self.authorization] = order.authorizations()

    def test_bound(self):
        self.assertThat(
            self.authorization,
            MatchesStructure(
                status=Equals(messages.STATUS_PENDING),
                domain=Equals(u'example.org'),
                wildcard=Is(False),
                terminal=Is(False)))
        self.assertThat(
            self.server.received[-1].payload, Is(None))

    def test_challenges(self):
        """
        The challenges are read from the authorization without fetching
        anything.
        """
        posts = self.server.posts
        challenges = self.authorization.challenges
        self.assertThat(challenges, HasLength(2))
        self.assertThat(
            [challenge.typ for challenge in challenges],
            Equals([u'http-01', u'dns-01']))
        self.assertThat(
            [challenge.authorization_location for challenge in challenges],
            Equals([self.authorization.location] * 2))
        self.assertThat(self.server.posts, Equals(posts))

    def test_bind_then_update(self):
        """
        An authorization bound and then updated equals the one read from the
        order.
        """
        bound = Authorization.bind(self.session, self.authorization.location)
        fresh = copy.copy(bound)
        bound.update()
        self.assertThat(bound, Equals(fresh))
        self.assertThat(bound, Equals(self.authorization))
        self.assertThat(self.server.received[-1].payload, Is(None))

    def test_challenge_not_offered(self):
        self.assertThat(
            self.authorization.challenge(u'tls-alpn-01'), Is(None))

    def test_validated(self):
        challenge = self.authorization.challenge(u'dns-01')
        challenge.trigger()
        self.server.complete_challenge(challenge.location)
        self.assertThat(self.authorization.poll(), MatchesStructure(
            status=Equals(messages.STATUS_VALID), terminal=Is(True)))
        self.assertThat(
            self.authorization.challenge(u'dns-01'),
            has_status(messages.STATUS_VALID))

    def test_deactivate(self):
        """
        A deactivated authorization stays deactivated.
        """
        self.authorization.deactivate()
        self.assertThat(
            self.authorization, has_status(messages.STATUS_DEACTIVATED))
        self.assertThat(self.authorization.terminal, Is(True))
        self.assertThat(
            self.server.received[-1].payload[u'status'],
            Equals(u'deactivated'))
        posts = self.server.posts
        self.assertThat(
            self.authorization.deactivate, raises(ValidationMismatchError))
        self.assertThat(self.server.posts, Equals(posts))

    def test_deactivate_valid(self):
        """
        A valid authorization can be deactivated.
        """
        challenge = self.authorization.challenge(u'http-01')
        challenge.trigger()
        self.server.complete_challenge(challenge.location)
        self.authorization.update()
        self.authorization.deactivate()
        self.assertThat(
            self.authorization, has_status(messages.STATUS_DEACTIVATED))

    def test_deactivate_invalid(self):
        """
        An invalid authorization can not be deactivated, and nothing is
        sent.
        """
        self.server.set_status(self.authorization.location, u'invalid')
        self.authorization.update()
        posts = self.server.posts
        self.assertThat(self.authorization.deactivate, raises(StateError))
        self.assertThat(self.server.posts, Equals(posts))

    def test_expired_after_valid(self):
        """
        Only deactivation leaves ``valid``; a different status reported by
        the CA is refused, and the authorization has to be bound again to
        see it.
        """
        self.server.set_status(self.authorization.location, u'valid')
        self.authorization.update()
        self.server.set_status(self.authorization.location, u'expired')
        self.assertThat(
            self.authorization.update, raises(UnexpectedTransition))
        self.assertThat(
            self.authorization, has_status(messages.STATUS_VALID))
        rebound = Authorization.bind(
            self.session, self.authorization.location)
        self.assertThat(rebound, has_status(STATUS_EXPIRED))
        self.assertThat(rebound.terminal, Is(True))

    def test_expired(self):
        self.server.set_status(self.authorization.location, u'expired')
        self.authorization.update()
        self.assertThat(self.authorization, has_status(STATUS_EXPIRED))


class CreateAuthorizationTests(TestCase):
    """
    Tests for `Authorization.create`.
    """
    def test_create(self):
        server, session = registered()
        authorization = Authorization.create(session, u'Example.ORG')
        self.assertThat(
            authorization,
            MatchesStructure(
                domain=Equals(u'example.org'),
                status=Equals(messages.STATUS_PENDING)))
        self.assertThat(
            server.authorizations, Contains(authorization.location))
        self.assertThat(
            server.received[-1].payload[u'identifier'],
            Equals({u'type': u'dns', u'value': u'example.org'}))

    def test_wildcard(self):
        """
        A wildcard name can not be pre-authorized, and nothing is sent.
        """
        server, session = registered()
        posts = server.posts
        self.assertThat(
            lambda: Authorization.create(session, u'*.Example.org'),
            raises(ValidationMismatchError))
        self.assertThat(server.posts, Equals(posts))
        self.assertThat(server.authorizations, Equals({}))

    def test_not_supported(self):
        """
        Pre-authorization needs the CA to publish ``newAuthz``.
        """
        server = FakeACMEServer()
        del server.endpoints[u'newAuthz']
        session = server.session(RSA_KEY)
        self.assertThat(
            lambda: Authorization.create(session, u'example.org'),
            raises(MissingEndpoint))
