"""
ACME authorizations.
"""
import attr
from acme import messages
from zope.interface import implementer, provider

from acmestate import resource
from acmestate.challenge import Challenge
from acmestate.client import decode_body
from acmestate.errors import (
    StateError, UnexpectedUpdate, ValidationMismatchError)
from acmestate.interfaces import IResource, IResourceType
from acmestate.logging import (
    LOG_ACME_CREATE_AUTHORIZATION, LOG_ACME_DEACTIVATE)
from acmestate.messages import STATUS_EXPIRED
from acmestate.util import fqdn_identifier, normalize_name


#: Status changes the CA may report on update.  Leaving ``valid`` is only
#: possible through `Authorization.deactivate`.
TRANSITIONS = {
    messages.STATUS_PENDING: frozenset([
        messages.STATUS_VALID,
        messages.STATUS_INVALID,
        messages.STATUS_DEACTIVATED,
        STATUS_EXPIRED,
        messages.STATUS_REVOKED,
        ]),
    }

DEACTIVATE_TRANSITIONS = {
    messages.STATUS_PENDING: frozenset([messages.STATUS_DEACTIVATED]),
    messages.STATUS_VALID: frozenset([messages.STATUS_DEACTIVATED]),
    }


@implementer(IResource)
@provider(IResourceType)
@attr.s
class Authorization(object):
    """
    The CA's record of whether the account controls one identifier.

    Challenges are read from the body once per location and kept, so a
    challenge triggered through one of them stays known as in flight.

    :ivar ~acme.messages.Authorization body: The last state seen.
    """
    kind = u'authorization'
    body_type = messages.Authorization
    transitions = TRANSITIONS

    session = attr.ib(eq=False, repr=False)
    location = attr.ib(on_setattr=attr.setters.frozen)
    body = attr.ib(repr=False)
    retry_after = attr.ib(default=None, eq=False)
    _challenges = attr.ib(
        default=attr.Factory(dict), eq=False, repr=False, init=False)

    @classmethod
    def from_response(cls, session, location, response):
        return cls(
            session=session,
            location=location,
            body=decode_body(response, cls.body_type),
            retry_after=response.retry_after)

    @classmethod
    def bind(cls, session, location):
        return resource.bind(cls, session, location)

    @classmethod
    def create(cls, session, domain):
        """
        Pre-authorize a domain name through ``newAuthz``, before ordering.

        :param str domain: The domain name; wildcards can not be
            pre-authorized.

        :raises ValidationMismatchError: For a wildcard name; nothing is
            sent.
        :raises MissingEndpoint: If the CA does not support
            pre-authorization.

        :rtype: `Authorization`
        """
        name = normalize_name(domain)
        if name.startswith(u'*.'):
            raise ValidationMismatchError(
                u'Wildcard names can not be pre-authorized', actual=name)
        identifier = fqdn_identifier(name)
        with LOG_ACME_CREATE_AUTHORIZATION(identifier=identifier) as action:
            url = session.endpoint(u'newAuthz')
            response = session.post(
                url, messages.NewAuthorization(identifier=identifier))
            authorization = cls.from_response(
                session, resource.require_location(response), response)
            if authorization.domain != identifier.value:
                raise UnexpectedUpdate(
                    u'Authorization for {!r} returned for {!r}'.format(
                        authorization.domain, identifier.value),
                    location=authorization.location)
            action.add_success_fields(
                location=authorization.location,
                status=authorization.status)
            return authorization

    def apply(self, response, operation=u'update', transitions=None):
        body = decode_body(response, self.body_type)
        known = []
        for challenge_body in body.challenges or ():
            challenge = self._challenges.get(challenge_body.uri)
            if challenge is not None:
                challenge.check_body(challenge_body)
                known.append((challenge, challenge_body))
        resource.apply_response(
            self, response, body, operation=operation,
            transitions=transitions)
        for challenge, challenge_body in known:
            if resource.may_transition(
                    challenge.transitions, challenge.status,
                    challenge_body.status):
                challenge.body = challenge_body
        return self

    def update(self):
        return resource.update(self)

    def poll(self):
        return resource.poll(self)

    @property
    def status(self):
        return self.body.status

    @property
    def terminal(self):
        return resource.is_terminal(self)

    @property
    def identifier(self):
        """
        :rtype: `~acme.messages.Identifier`
        """
        return self.body.identifier

    @property
    def wildcard(self):
        return bool(self.body.wildcard)

    @property
    def domain(self):
        """
        The normalized name this authorization is for, with the ``*.``
        prefix for a wildcard authorization, as it appears in the order.
        """
        name = normalize_name(self.body.identifier.value)
        if self.wildcard and not name.startswith(u'*.'):
            name = u'*.' + name
        return name

    @property
    def expires(self):
        return self.body.expires

    @property
    def challenges(self):
        """
        The challenges offered, read from the authorization body without
        fetching anything.  The same instances are returned every time.

        :rtype: Tuple[`~acmestate.challenge.Challenge`, ...]
        """
        found = []
        for body in self.body.challenges or ():
            challenge = self._challenges.get(body.uri)
            if challenge is None:
                challenge = self._challenges[body.uri] = Challenge.from_body(
                    self.session, body, self.location, authorization=self)
            found.append(challenge)
        return tuple(found)

    @property
    def in_flight(self):
        """
        The challenge being validated: one triggered through this
        authorization, or one the CA reports as processing.

        :return: The challenge, or ``None``.
        """
        for challenge in self.challenges:
            if challenge.terminal:
                continue
            if (challenge.triggered or
                    challenge.status == messages.STATUS_PROCESSING):
                return challenge
        return None

    def challenge(self, typ):
        """
        Find the challenge of a type, e.g. ``u'dns-01'``.

        :return: The challenge, or ``None`` if none of that type is offered.
        """
        for challenge in self.challenges:
            if challenge.typ == typ:
                return challenge
        return None

    def deactivate(self):
        """
        Deactivate the authorization, so it can no longer be used to issue
        certificates.  This can not be undone.

        :raises ValidationMismatchError: If it was already deactivated.
        :raises StateError: If it is neither pending nor valid.

        :return: The authorization, updated from the response.
        """
        with LOG_ACME_DEACTIVATE(
                location=self.location, kind=self.kind) as action:
            resource.check_not_deactivated(self, u'deactivate')
            if self.status not in DEACTIVATE_TRANSITIONS:
                raise StateError(u'deactivate', self.location, self.status)
            response = self.session.post(
                self.location,
                messages.UpdateAuthorization(
                    status=messages.STATUS_DEACTIVATED))
            self.apply(
                response, operation=u'deactivate',
                transitions=DEACTIVATE_TRANSITIONS)
            action.add_success_fields(status=self.status)
            return self


__all__ = ['Authorization', 'TRANSITIONS', 'DEACTIVATE_TRANSITIONS']
