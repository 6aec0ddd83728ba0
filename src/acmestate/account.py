"""
ACME accounts.
"""
import attr
from acme import jws, messages
from twisted.web import http
from zope.interface import implementer, provider

from acmestate import resource
from acmestate.client import decode_body
from acmestate.interfaces import IResource, IResourceType
from acmestate.logging import (
    LOG_ACME_BIND_RESOURCE,
    LOG_ACME_DEACTIVATE,
    LOG_ACME_KEY_CHANGE,
    LOG_ACME_REGISTER,
    LOG_ACME_UPDATE_REGISTRATION,
    )
from acmestate.messages import (
    KeyChange, NewRegistration, Registration, UpdateRegistration)


TRANSITIONS = {
    messages.STATUS_VALID: frozenset([
        messages.STATUS_DEACTIVATED,
        messages.STATUS_REVOKED,
        ]),
    }


@attr.s(frozen=True)
class ExternalAccountBinding(object):
    """
    Credentials binding a new account to an account the CA knows from
    elsewhere; see `acme.messages.ExternalAccountBinding`.

    :ivar str kid: The key identifier given by the CA.
    :ivar str hmac_key: The base64url encoded MAC key given by the CA.
    """
    kid = attr.ib()
    hmac_key = attr.ib(repr=False)

    def to_json(self, session):
        return messages.ExternalAccountBinding.from_data(
            session.key.public_key(), self.kid, self.hmac_key,
            session.directory)


def _terms_of_service(response):
    links = response.links(u'terms-of-service')
    if links:
        return links[0]
    return None


@implementer(IResource)
@provider(IResourceType)
@attr.s
class Account(object):
    """
    The account the session's key belongs to.

    :ivar ~acmestate.messages.Registration body: The last state seen.
    :ivar bool created: Whether the account was newly created by `create`.
    :ivar str terms_of_service: The terms of service link, if the CA sent
        one.
    """
    kind = u'account'
    body_type = Registration
    transitions = TRANSITIONS

    session = attr.ib(eq=False, repr=False)
    location = attr.ib(on_setattr=attr.setters.frozen)
    body = attr.ib(repr=False)
    retry_after = attr.ib(default=None, eq=False)
    created = attr.ib(default=False, eq=False)
    terms_of_service = attr.ib(default=None, eq=False)

    @classmethod
    def from_response(cls, session, location, response, created=False):
        return cls(
            session=session,
            location=location,
            body=decode_body(response, cls.body_type),
            retry_after=response.retry_after,
            created=created,
            terms_of_service=_terms_of_service(response))

    @classmethod
    def _register(cls, session, registration):
        with LOG_ACME_REGISTER(registration=registration) as action:
            response = session.post(
                session.endpoint(u'newAccount'), registration, embed_key=True)
            account = cls.from_response(
                session, resource.require_location(response), response,
                created=response.code == http.CREATED)
            session.account_location = account.location
            action.add_success_fields(
                location=account.location, status=account.status,
                created=account.created)
            return account

    @classmethod
    def create(cls, session, contacts=(), terms_agreed=False,
               external_account_binding=None):
        """
        Create an account for the session's key, or find the existing one.

        The CA answers with the existing account if the key is already
        registered; that is not an error, but ``created`` is ``False``.  If
        contacts are given and differ from the existing account's, they are
        updated.

        Either way, the session signs with the account location afterwards.

        :param contacts: Contact URLs, e.g. ``u'mailto:admin@example.org'``.
        :param bool terms_agreed: Whether the terms of service (see
            ``session.meta.terms_of_service``) were agreed to.
        :param ExternalAccountBinding external_account_binding: For CAs that
            require it.

        :rtype: `Account`
        """
        contacts = tuple(contacts)
        kwargs = {}
        if contacts:
            kwargs[u'contact'] = contacts
        if terms_agreed:
            kwargs[u'terms_of_service_agreed'] = True
        if external_account_binding is not None:
            kwargs[u'external_account_binding'] = (
                external_account_binding.to_json(session))
        account = cls._register(session, NewRegistration(**kwargs))
        if (not account.created and contacts and
                frozenset(account.contacts) != frozenset(contacts)):
            account.update_contacts(contacts)
        return account

    @classmethod
    def lookup(cls, session):
        """
        Find the existing account of the session's key, without creating
        one.

        :raises ProtocolError: ``accountDoesNotExist`` if there is none.

        :rtype: `Account`
        """
        return cls._register(
            session, NewRegistration(only_return_existing=True))

    @classmethod
    def bind(cls, session, location):
        """
        Fetch the account at ``location``.  The session signs with it
        afterwards; if fetching fails, the session keeps the account it was
        bound to.

        :rtype: `Account`
        """
        with LOG_ACME_BIND_RESOURCE(
                location=location, kind=cls.kind) as action:
            response = session.fetch(location, kid=location)
            resource.check_location(location, response)
            account = cls.from_response(session, location, response)
            session.account_location = location
            action.add_success_fields(status=account.status)
            return account

    def apply(self, response, operation=u'update'):
        resource.apply_response(self, response, operation=operation)
        terms = _terms_of_service(response)
        if terms is not None:
            self.terms_of_service = terms
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
        return self.status in (
            messages.STATUS_DEACTIVATED, messages.STATUS_REVOKED)

    @property
    def contacts(self):
        return tuple(self.body.contact or ())

    def update_contacts(self, contacts):
        """
        Replace the contacts of the account; an empty sequence removes all.

        :raises ValidationMismatchError: If the account was deactivated.

        :return: The account, updated from the response.
        """
        resource.check_not_deactivated(self, u'update_contacts')
        registration = UpdateRegistration(contact=tuple(contacts))
        with LOG_ACME_UPDATE_REGISTRATION(
                registration=registration, location=self.location) as action:
            response = self.session.post(self.location, registration)
            self.apply(response, operation=u'update_contacts')
            action.add_success_fields(status=self.status)
            return self

    def deactivate(self):
        """
        Deactivate the account.  This can not be undone; the CA refuses every
        later request signed for it.

        :raises ValidationMismatchError: If it was already deactivated.

        :return: The account, updated from the response.
        """
        with LOG_ACME_DEACTIVATE(
                location=self.location, kind=self.kind) as action:
            resource.check_not_deactivated(self, u'deactivate')
            response = self.session.post(
                self.location,
                UpdateRegistration(status=messages.STATUS_DEACTIVATED))
            self.apply(response, operation=u'deactivate')
            action.add_success_fields(status=self.status)
            return self

    def change_key(self, new_key, alg=None):
        """
        Roll the account over to a new key.

        The key change request is signed by the current key and wraps a
        request signed by the new one.  Afterwards the session signs with
        the new key; the account location stays the same.

        :param ~josepy.jwk.JWK new_key: The new account key.
        :param alg: The signing algorithm for ``new_key``; the session's by
            default.

        :raises ValidationMismatchError: If the account was deactivated.

        :return: The account.
        """
        resource.check_not_deactivated(self, u'change_key')
        if alg is None:
            alg = self.session.alg
        with LOG_ACME_KEY_CHANGE(
                location=self.location,
                old_key_type=self.session.key.typ,
                new_key_type=new_key.typ):
            url = self.session.endpoint(u'keyChange')
            payload = KeyChange(
                account=self.location, old_key=self.session.key.public_key())
            inner = jws.JWS.sign(
                payload=payload.json_dumps().encode(),
                key=new_key,
                alg=alg,
                nonce=None,
                url=url)
            self.session.post(url, inner, content_type=None)
            self.session.key = new_key
            self.session.alg = alg
            return self


__all__ = ['Account', 'ExternalAccountBinding', 'TRANSITIONS']
