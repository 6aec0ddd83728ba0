"""
ACME challenges.

A challenge is one way of proving control of an identifier.  The common
envelope (location, status, validated time, error) is the same for every
type; the type-specific part is the `acme.challenges` object for the type.
Types `acme` does not know are kept as their raw JSON, so they can still be
inspected and triggered.
"""
import attr
from acme import challenges, messages
from zope.interface import implementer, provider

from acmestate import resource
from acmestate.client import decode_body
from acmestate.errors import StateError, UnexpectedUpdate
from acmestate.interfaces import IResource, IResourceType
from acmestate.logging import LOG_ACME_ANSWER_CHALLENGE
from acmestate.messages import ChallengeAnswer


TRANSITIONS = {
    messages.STATUS_PENDING: frozenset([
        messages.STATUS_PROCESSING,
        messages.STATUS_VALID,
        messages.STATUS_INVALID,
        ]),
    messages.STATUS_PROCESSING: frozenset([
        messages.STATUS_VALID,
        messages.STATUS_INVALID,
        ]),
    }


def _check_url(location, body):
    if body.uri is not None and body.uri != location:
        raise UnexpectedUpdate(
            u'Challenge URL does not match the resource', location=body.uri)


def _typ(body):
    if isinstance(body.chall, challenges.UnrecognizedChallenge):
        return body.chall.jobj.get(u'type')
    return body.chall.typ


def _token(body):
    return body.to_json().get(u'token')


def _check_siblings(authorization):
    if authorization.status != messages.STATUS_PENDING:
        raise StateError(
            u'trigger', authorization.location, authorization.status)
    other = authorization.in_flight
    if other is not None:
        raise StateError(u'trigger', other.location, other.status)


@implementer(IResource)
@provider(IResourceType)
@attr.s
class Challenge(object):
    """
    A challenge of an authorization.

    :ivar ~acme.messages.ChallengeBody body: The last state seen.
    :ivar str authorization_location: The authorization the challenge belongs
        to, if known.
    :ivar bool triggered: Whether `trigger` was called on this instance.
    :ivar authorization: The `~acmestate.authorization.Authorization` the
        challenge was read from, if any.
    """
    kind = u'challenge'
    body_type = messages.ChallengeBody
    transitions = TRANSITIONS

    session = attr.ib(eq=False, repr=False)
    location = attr.ib(on_setattr=attr.setters.frozen)
    body = attr.ib(repr=False)
    retry_after = attr.ib(default=None, eq=False)
    authorization_location = attr.ib(default=None, eq=False)
    triggered = attr.ib(default=False, eq=False)
    authorization = attr.ib(default=None, eq=False, repr=False)

    @classmethod
    def from_body(cls, session, body, authorization_location=None,
                  authorization=None):
        """
        Build a challenge from its body embedded in an authorization.
        """
        return cls(
            session=session,
            location=body.uri,
            body=body,
            authorization_location=authorization_location,
            authorization=authorization)

    @classmethod
    def from_response(cls, session, location, response):
        body = decode_body(response, cls.body_type)
        _check_url(location, body)
        up = response.links(u'up')
        return cls(
            session=session,
            location=location,
            body=body,
            retry_after=response.retry_after,
            authorization_location=up[0] if up else None)

    @classmethod
    def bind(cls, session, location):
        return resource.bind(cls, session, location)

    def check_body(self, body):
        """
        Check that a newly received body is still this challenge.

        :raises UnexpectedUpdate: If it is for another URL, or its type or
            token changed.
        """
        _check_url(self.location, body)
        if _typ(body) != self.typ or _token(body) != self.token:
            raise UnexpectedUpdate(
                u'Challenge type or token changed', location=self.location)

    def apply(self, response):
        body = decode_body(response, self.body_type)
        self.check_body(body)
        resource.apply_response(self, response, body)
        up = response.links(u'up')
        if up:
            self.authorization_location = up[0]
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
    def validated(self):
        return self.body.validated

    @property
    def error(self):
        """
        The `~acme.messages.Error` of a failed validation, or ``None``.
        """
        return self.body.error

    @property
    def recognized(self):
        """
        Whether `acme` knows the challenge type.
        """
        return not isinstance(
            self.body.chall, challenges.UnrecognizedChallenge)

    @property
    def raw(self):
        """
        The full JSON of the challenge, including fields of unknown types.

        :rtype: dict
        """
        return self.body.to_json()

    @property
    def typ(self):
        """
        The challenge type, e.g. ``u'http-01'``.
        """
        return _typ(self.body)

    @property
    def token(self):
        """
        The token of the challenge, as it appears in the JSON, or ``None`` if
        the type has none.
        """
        return _token(self.body)

    def _key_authorization_challenge(self, operation):
        if not isinstance(self.body.chall,
                          challenges.KeyAuthorizationChallenge):
            raise StateError(operation, self.location, self.status)
        return self.body.chall

    def key_authorization(self):
        """
        The key authorization for the session's account key.

        :raises StateError: If the type does not use key authorizations.

        :rtype: str
        """
        chall = self._key_authorization_challenge(u'key_authorization')
        return chall.key_authorization(self.session.key)

    def validation(self, **kwargs):
        """
        What has to be provisioned for the CA to find: the TXT record value
        for ``dns-01``, the response body for ``http-01``.

        :raises StateError: If the type does not use key authorizations.
        """
        chall = self._key_authorization_challenge(u'validation')
        return chall.validation(self.session.key, **kwargs)

    def trigger(self):
        """
        Tell the CA the challenge is ready to be validated.

        Only a pending challenge can be triggered, and only once per instance:
        after the first call the challenge counts as in flight even while the
        CA still reports it as pending.  Of the challenges read from one
        `~acmestate.authorization.Authorization`, only one can be in flight.

        :raises StateError: If the challenge was already triggered, if it or
            its authorization is not pending, or if another challenge of the
            authorization is in flight.

        :return: The challenge, updated from the response.
        """
        with LOG_ACME_ANSWER_CHALLENGE(
                location=self.location, typ=self.typ) as action:
            if self.triggered or self.status != messages.STATUS_PENDING:
                raise StateError(u'trigger', self.location, self.status)
            if self.authorization is not None:
                _check_siblings(self.authorization)
            response = self.session.post(self.location, ChallengeAnswer())
            self.triggered = True
            self.apply(response)
            action.add_success_fields(status=self.status)
            return self


__all__ = ['Challenge', 'TRANSITIONS']
