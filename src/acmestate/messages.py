"""
ACME protocol messages.

This module provides supplementary message implementations that are not already
provided by the `acme` library.

..  seealso:: `acme.messages`
"""
import datetime
from typing import Optional

import josepy as jose
from acme import fields, messages
from cryptography import x509

from acmestate.util import decode_cert, decode_csr, encode_cert, encode_csr


#: Authorizations past their ``expires`` time; `acme` has no constant for it.
STATUS_EXPIRED = messages.Status(u'expired')


class Registration(messages.Registration):
    """
    ACME account body, with the status decoded to a `~acme.messages.Status`.

    ..  seealso:: `acme.messages.Registration`
    """
    status: messages.Status = jose.field(
        'status', omitempty=True, decoder=messages.Status.from_json)


class NewRegistration(Registration):
    """
    ACME newAccount request.
    """


class UpdateRegistration(Registration):
    """
    ACME account update request: new contacts, or deactivation.
    """


class ChallengeAnswer(jose.JSONObjectWithFields):
    """
    The empty object telling the CA a challenge is ready to be validated.
    """


class Order(messages.Order):
    """
    ACME order body, including the optional validity hints the client may
    send with the order.

    ..  seealso:: `acme.messages.Order`
    """
    not_before: Optional[datetime.datetime] = fields.rfc3339(
        'notBefore', omitempty=True)
    not_after: Optional[datetime.datetime] = fields.rfc3339(
        'notAfter', omitempty=True)


class NewOrder(Order):
    """
    ACME newOrder request.
    """


class Finalize(jose.JSONObjectWithFields):
    """
    ACME order finalize request.

    Differs from `acme.messages.CertificateRequest` because it wraps a
    Cryptography CSR object and encodes it without going through pyOpenSSL.

    :ivar cryptography.x509.CertificateSigningRequest csr:
    """
    csr: x509.CertificateSigningRequest = jose.field(
        'csr', decoder=decode_csr, encoder=encode_csr)


class KeyChange(jose.JSONObjectWithFields):
    """
    Payload of the inner JWS of an account key rollover.

    :ivar str account: The account URL.
    :ivar ~josepy.jwk.JWK old_key: The public key being replaced.
    """
    account: str = jose.field('account')
    old_key: jose.JWK = jose.field('oldKey', decoder=jose.JWK.from_json)


class Revocation(jose.JSONObjectWithFields):
    """
    ACME revokeCert request.

    :ivar cryptography.x509.Certificate certificate:
    :ivar int reason: CRL reason code.
    """
    certificate: x509.Certificate = jose.field(
        'certificate', decoder=decode_cert, encoder=encode_cert)
    reason: int = jose.field('reason', omitempty=True)


__all__ = [
    'STATUS_EXPIRED', 'Registration', 'NewRegistration',
    'UpdateRegistration', 'ChallengeAnswer', 'Order', 'NewOrder',
    'Finalize', 'KeyChange', 'Revocation']
