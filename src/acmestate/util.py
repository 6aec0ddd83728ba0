"""
Utility functions that may prove useful when writing an ACME client.
"""
from datetime import datetime, timedelta, timezone

from acme import messages
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID
from josepy.errors import DeserializationError
from josepy.json_util import decode_b64jose, encode_b64jose
from twisted.python.url import URL
from twisted.web import http


def fqdn_identifier(fqdn):
    """
    Construct an identifier from an FQDN.

    Trivial implementation, just saves on typing.

    :param str fqdn: The domain name.

    :return: The identifier.
    :rtype: `~acme.messages.Identifier`
    """
    return messages.Identifier(
        typ=messages.IDENTIFIER_FQDN, value=fqdn)


def normalize_name(name):
    """
    Normalize a domain name for comparison: lowercase, no surrounding
    whitespace, no trailing dot.  A leading ``*.`` is kept, so a wildcard
    name never compares equal to its base domain.

    :param str name: The domain name.

    :rtype: str
    """
    return name.strip().rstrip(u'.').lower()


def name_set(names):
    """
    The normalized, order-insensitive set of some domain names.

    :rtype: frozenset
    """
    return frozenset(normalize_name(name) for name in names)


def encode_csr(csr):
    """
    Encode CSR as JOSE Base-64 DER.

    :param cryptography.x509.CertificateSigningRequest csr: The CSR.

    :rtype: str
    """
    return encode_b64jose(csr.public_bytes(serialization.Encoding.DER))


def decode_csr(b64der):
    """
    Decode JOSE Base-64 DER-encoded CSR.

    :param str b64der: The encoded CSR.

    :rtype: `cryptography.x509.CertificateSigningRequest`
    :return: The decoded CSR.
    """
    try:
        return x509.load_der_x509_csr(decode_b64jose(b64der))
    except ValueError as error:
        raise DeserializationError(error)


def encode_cert(cert):
    """
    Encode a certificate as JOSE Base-64 DER.

    :param cryptography.x509.Certificate cert: The certificate.

    :rtype: str
    """
    return encode_b64jose(cert.public_bytes(serialization.Encoding.DER))


def decode_cert(b64der):
    """
    Decode a JOSE Base-64 DER-encoded certificate.

    :rtype: `cryptography.x509.Certificate`
    """
    try:
        return x509.load_der_x509_certificate(decode_b64jose(b64der))
    except ValueError as error:
        raise DeserializationError(error)


def load_csr(csr):
    """
    Load a CSR given as PEM bytes, DER bytes or an already loaded object.

    :raises ValueError: If the data is not a CSR.

    :rtype: `cryptography.x509.CertificateSigningRequest`
    """
    if isinstance(csr, x509.CertificateSigningRequest):
        return csr
    if csr.lstrip().startswith(b'-----BEGIN'):
        return x509.load_pem_x509_csr(csr)
    return x509.load_der_x509_csr(csr)


def csr_names(csr):
    """
    The set of names a CSR asks for: the subject common name(s) and the DNS
    subjectAltNames, normalized with `normalize_name`.

    :param cryptography.x509.CertificateSigningRequest csr: The CSR.

    :rtype: frozenset
    """
    names = [
        attribute.value
        for attribute
        in csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)]
    try:
        san = csr.extensions.get_extension_for_class(
            x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        pass
    else:
        names.extend(san.value.get_values_for_type(x509.DNSName))
    return name_set(names)


def parse_retry_after(value, now=None):
    """
    Parse a ``Retry-After`` header value.

    Both forms allowed by RFC 7231 are supported: delta-seconds
    (``"120"``) and an HTTP-date (``"Fri, 31 Dec 1999 23:59:59 GMT"``).

    :param str value: The header value, or ``None`` if the header was
        absent.
    :param ~datetime.datetime now: The (timezone aware) instant the
        response was received; defaults to the current time.

    :return: The instant after which the resource should be fetched again,
        or ``None`` if there is no usable hint.
    :rtype: `~datetime.datetime`
    """
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode('latin-1')
    value = value.strip()
    if not value:
        return None
    if now is None:
        now = datetime.now(timezone.utc)
    if value.isdigit():
        try:
            return now + timedelta(seconds=int(value))
        except (ValueError, OverflowError):
            return None
    try:
        seconds = http.stringToDatetime(value.encode('ascii'))
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (ValueError, IndexError, OverflowError, OSError):
        return None


def clock_now(clock):
    """
    Get a datetime representing the current time.

    :param clock: An ``IReactorTime`` provider.

    :rtype: `~datetime.datetime`
    :return: A timezone aware datetime representing the current time.
    """
    return datetime.fromtimestamp(clock.seconds(), tz=timezone.utc)


def generate_private_key(key_type):
    """
    Generate a random private key using sensible parameters.

    :param str key_type: The type of key to generate. One of: ``rsa``,
        ``ec``.
    """
    if key_type == u'rsa':
        return rsa.generate_private_key(public_exponent=65537, key_size=2048)
    if key_type == u'ec':
        return ec.generate_private_key(ec.SECP256R1())
    raise ValueError(key_type)


def csr_for_names(names, key):
    """
    Generate a certificate signing request for the given names and private key.

    The first name becomes the subject common name, unless it is too long for
    one; all of them become DNS subjectAltNames.

    :param ``List[str]`` names: One or more names.
    :param key: A Cryptography private key object.

    :rtype: `cryptography.x509.CertificateSigningRequest`
    """
    if len(names) == 0:
        raise ValueError('Must have at least one name')
    subject = []
    if len(names[0]) <= 64:
        subject.append(x509.NameAttribute(NameOID.COMMON_NAME, names[0]))
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name(subject))
        .add_extension(
            x509.SubjectAlternativeName(list(map(x509.DNSName, names))),
            critical=False)
        .sign(key, hashes.SHA256()))


def check_directory_url_type(url):
    """
    Check that ``url`` is a ``twisted.python.url.URL`` instance, raising
    `TypeError` if it isn't.
    """
    if not isinstance(url, URL):
        raise TypeError(
            'ACME directory URL should be a twisted.python.url.URL, '
            'got {!r} instead'.format(url))


__all__ = [
    'fqdn_identifier', 'normalize_name', 'name_set', 'encode_csr',
    'decode_csr', 'encode_cert', 'decode_cert', 'load_csr', 'csr_names',
    'parse_retry_after', 'clock_now', 'generate_private_key',
    'csr_for_names', 'check_directory_url_type']
