"""
ACME orders.
"""
import attr
from acme import messages
from zope.interface import implementer, provider

from acmestate import resource
from acmestate.authorization import Authorization
from acmestate.certificate import fetch_chain
from acmestate.client import decode_body
from acmestate.errors import (
    StateError, UnexpectedUpdate, ValidationMismatchError)
from acmestate.interfaces import IResource, IResourceType
from acmestate.logging import LOG_ACME_CREATE_ORDER, LOG_ACME_FINALIZE_ORDER
from acmestate.messages import Finalize, NewOrder, Order as OrderBody
from acmestate.util import (
    csr_names, fqdn_identifier, load_csr, name_set, normalize_name)


TRANSITIONS = {
    messages.STATUS_PENDING: frozenset([
        messages.STATUS_READY,
        messages.STATUS_PROCESSING,
        messages.STATUS_VALID,
        messages.STATUS_INVALID,
        ]),
    messages.STATUS_READY: frozenset([
        messages.STATUS_PROCESSING,
        messages.STATUS_VALID,
        messages.STATUS_INVALID,
        ]),
    messages.STATUS_PROCESSING: frozenset([
        messages.STATUS_VALID,
        messages.STATUS_INVALID,
        ]),
    }


def _check_identifiers(names):
    if not names:
        raise ValidationMismatchError(u'An order needs at least one name')
    if len(set(names)) != len(names):
        raise ValidationMismatchError(
            u'Duplicate names in order', actual=names)


@implementer(IResource)
@provider(IResourceType)
@attr.s
class Order(object):
    """
    A request for a certificate covering a set of identifiers.

    :ivar ~acmestate.messages.Order body: The last state seen.
    """
    kind = u'order'
    body_type = OrderBody
    transitions = TRANSITIONS

    session = attr.ib(eq=False, repr=False)
    location = attr.ib(on_setattr=attr.setters.frozen)
    body = attr.ib(repr=False)
    retry_after = attr.ib(default=None, eq=False)

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
    def create(cls, session, names, not_before=None, not_after=None):
        """
        Order a certificate for some domain names.

        :param names: The domain names; a name starting with ``*.`` is a
            wildcard.  Compared case-insensitively.
        :param ~datetime.datetime not_before: Requested start of validity.
        :param ~datetime.datetime not_after: Requested end of validity.

        :raises ValidationMismatchError: If no names, or duplicate names, are
            given; nothing is sent then.
        :raises UnexpectedUpdate: If the CA created an order for other names.

        :rtype: `Order`
        """
        names = [normalize_name(name) for name in names]
        _check_identifiers(names)
        with LOG_ACME_CREATE_ORDER(identifiers=names) as action:
            body = NewOrder(
                identifiers=[fqdn_identifier(name) for name in names],
                not_before=not_before,
                not_after=not_after)
            response = session.post(session.endpoint(u'newOrder'), body)
            order = cls.from_response(
                session, resource.require_location(response), response)
            if order.names != name_set(names):
                raise UnexpectedUpdate(
                    u'Order for {!r} returned for {!r}'.format(
                        sorted(order.names), sorted(names)),
                    location=order.location)
            action.add_success_fields(
                location=order.location, status=order.status)
            return order

    def apply(self, response, operation=u'update'):
        return resource.apply_response(self, response, operation=operation)

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
    def identifiers(self):
        """
        :rtype: Tuple[`~acme.messages.Identifier`, ...]
        """
        return tuple(self.body.identifiers or ())

    @property
    def names(self):
        """
        The normalized set of names the order is for.

        :rtype: frozenset
        """
        return name_set(
            identifier.value for identifier in self.identifiers)

    @property
    def authorization_locations(self):
        return tuple(self.body.authorizations or ())

    @property
    def error(self):
        return self.body.error

    @property
    def expires(self):
        return self.body.expires

    def authorizations(self):
        """
        Bind the authorizations of the order, one fetch each.

        :rtype: List[`~acmestate.authorization.Authorization`]
        """
        return [
            Authorization.bind(self.session, location)
            for location in self.authorization_locations]

    def finalize(self, csr):
        """
        Ask the CA to issue the certificate.

        :param csr: The CSR, as PEM or DER bytes or a
            `cryptography.x509.CertificateSigningRequest`.  Its subject common
            name and DNS subjectAltNames together must be exactly the names of
            the order.

        :raises ValidationMismatchError: If the CSR does not match the order;
            nothing is sent then.
        :raises StateError: If the order is not ready.

        :return: The order, updated from the response.
        """
        with LOG_ACME_FINALIZE_ORDER(
                location=self.location,
                identifiers=sorted(self.names)) as action:
            try:
                csr = load_csr(csr)
            except ValueError as error:
                raise ValidationMismatchError(
                    u'Cannot load CSR: {}'.format(error))
            requested = csr_names(csr)
            if requested != self.names:
                raise ValidationMismatchError(
                    u'CSR names do not match the order',
                    expected=sorted(self.names),
                    actual=sorted(requested))
            if self.status != messages.STATUS_READY:
                raise StateError(u'finalize', self.location, self.status)
            response = self.session.post(self.body.finalize, Finalize(csr=csr))
            self.apply(response, operation=u'finalize')
            action.add_success_fields(status=self.status)
            return self

    def fetch_certificate(self, url=None):
        """
        Download the issued certificate chain.

        :param str url: An alternate chain URL of a previously fetched chain;
            the order's certificate URL by default.

        :raises StateError: If the order is not valid.

        :rtype: `~acmestate.certificate.CertificateChain`
        """
        if self.status != messages.STATUS_VALID or not self.body.certificate:
            raise StateError(u'fetch_certificate', self.location, self.status)
        if url is None:
            url = self.body.certificate
        return fetch_chain(self.session, url)


__all__ = ['Order', 'TRANSITIONS']
