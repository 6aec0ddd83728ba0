"""
Downloaded certificates and revocation.
"""
import attr
import pem
from cryptography import x509

from acmestate.client import PEM_CHAIN_TYPE
from acmestate.errors import TransportError
from acmestate.logging import (
    LOG_ACME_FETCH_CERTIFICATE, LOG_ACME_REVOKE_CERTIFICATE)
from acmestate.messages import Revocation


@attr.s(frozen=True)
class CertificateChain(object):
    """
    A certificate chain as issued by the CA.

    :ivar bytes pem: The chain, as downloaded.
    :ivar certificates: The certificates of the chain, leaf first.
    :vartype certificates: Tuple[`pem.Certificate`, ...]
    :ivar alternates: URLs of alternate chains for the same certificate.
    :ivar str location: Where the chain was downloaded from.
    """
    pem = attr.ib(repr=False)
    certificates = attr.ib(repr=False)
    alternates = attr.ib(default=())
    location = attr.ib(default=None)

    @classmethod
    def from_response(cls, response):
        """
        :raises TransportError: If the response holds no certificate.
        """
        certificates = tuple(
            obj for obj in pem.parse(response.content)
            if isinstance(obj, pem.Certificate))
        if not certificates:
            raise TransportError(
                reason=u'No certificate in response', url=response.url,
                status_code=response.code)
        return cls(
            pem=response.content,
            certificates=certificates,
            alternates=tuple(response.links(u'alternate')),
            location=response.url)

    @property
    def leaf(self):
        """
        The end-entity certificate.

        :rtype: `cryptography.x509.Certificate`
        """
        return x509.load_pem_x509_certificate(self.certificates[0].as_bytes())


def fetch_chain(session, url):
    """
    Download a certificate chain with a POST-as-GET.

    :rtype: `CertificateChain`
    """
    with LOG_ACME_FETCH_CERTIFICATE(url=url) as action:
        response = session.fetch(
            url, content_type=PEM_CHAIN_TYPE, accept=PEM_CHAIN_TYPE)
        chain = CertificateChain.from_response(response)
        action.add_success_fields(
            certificates=len(chain.certificates),
            alternates=len(chain.alternates))
        return chain


def _load_certificate(certificate):
    if isinstance(certificate, x509.Certificate):
        return certificate
    if isinstance(certificate, CertificateChain):
        return certificate.leaf
    if certificate.lstrip().startswith(b'-----BEGIN'):
        return x509.load_pem_x509_certificate(certificate)
    return x509.load_der_x509_certificate(certificate)


def revoke(session, certificate, reason=0, key=None, alg=None):
    """
    Revoke a certificate.

    :param certificate: The certificate, as a cryptography certificate, PEM
        or DER bytes, or a `CertificateChain`.
    :param int reason: The CRL reason code.
    :param ~josepy.jwk.JWK key: The private key of the certificate, to sign
        the request with instead of the account key.  The request then
        embeds the public key, and needs no account.
    :param alg: The signing algorithm for ``key``; the session's by default.
    """
    certificate = _load_certificate(certificate)
    with LOG_ACME_REVOKE_CERTIFICATE(
            reason=reason,
            serial=u'{:x}'.format(certificate.serial_number)):
        url = session.endpoint(u'revokeCert')
        body = Revocation(certificate=certificate, reason=reason)
        if key is None:
            session.post(url, body, content_type=None)
        else:
            session.transport.post(
                url, body, key=key, alg=alg or session.alg, kid=None,
                content_type=None)


__all__ = ['CertificateChain', 'fetch_chain', 'revoke']
