from datetime import datetime, timedelta, timezone

from acme import messages
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID
from hypothesis import example, given
from testtools import TestCase
from testtools.matchers import Equals, Is, raises
from twisted.internet.task import Clock
from twisted.python.url import URL
from twisted.web import http

from acmestate.test import strategies as ts
from acmestate.test.matchers import ValidForName
from acmestate.util import (
    check_directory_url_type, clock_now, csr_for_names, csr_names,
    decode_csr, encode_csr, fqdn_identifier, generate_private_key, load_csr,
    name_set, normalize_name, parse_retry_after)

KEY = generate_private_key(u'ec')

NOW = datetime(2024, 2, 29, 12, 30, 15, tzinfo=timezone.utc)


class IdentifierTests(TestCase):
    """
    Tests for identifier and name helpers.
    """
    def test_fqdn_identifier(self):
        """
        `fqdn_identifier` constructs an identifier of type FQDN.
        """
        self.assertThat(
            fqdn_identifier(u'example.com'),
            Equals(messages.Identifier(
                typ=messages.IDENTIFIER_FQDN, value=u'example.com')))

    def test_normalize_name(self):
        self.assertThat(
            normalize_name(u' WWW.Example.ORG. '), Equals(u'www.example.org'))

    def test_wildcard_prefix_kept(self):
        """
        A wildcard name never normalizes to its base domain.
        """
        self.assertThat(
            name_set([u'*.Example.org']),
            Equals(frozenset([u'*.example.org'])))
        self.assertNotEqual(
            name_set([u'*.example.org']), name_set([u'example.org']))

    @given(ts.name_sets(), ts.name_sets())
    def test_name_set_ignores_order(self, names, other):
        self.assertThat(
            name_set(names) == name_set(other),
            Equals(set(names) == set(other)))


class CSRTests(TestCase):
    """
    Tests for CSR helpers.
    """
    def test_csr_for_names(self):
        """
        The first name is the common name, and all of them are subject
        alternative names.
        """
        csr = csr_for_names([u'example.org', u'www.example.org'], KEY)
        self.assertThat(csr, ValidForName(u'example.org'))
        self.assertThat(csr, ValidForName(u'www.example.org'))
        self.assertThat(
            csr_names(csr),
            Equals(frozenset([u'example.org', u'www.example.org'])))

    def test_common_name_counts(self):
        """
        A common name missing from the subjectAltNames is still a name of
        the CSR.
        """
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name([
                x509.NameAttribute(
                    NameOID.COMMON_NAME, u'Example.ORG')]))
            .add_extension(
                x509.SubjectAlternativeName(
                    [x509.DNSName(u'www.example.org')]),
                critical=False)
            .sign(KEY, hashes.SHA256()))
        self.assertThat(
            csr_names(csr),
            Equals(frozenset([u'example.org', u'www.example.org'])))

    def test_no_names(self):
        self.assertThat(
            lambda: csr_for_names([], KEY), raises(ValueError))

    def test_long_name(self):
        """
        A name too long for a common name is only a subjectAltName.
        """
        name = u'.'.join([u'a' * 30] * 3)
        csr = csr_for_names([name], KEY)
        self.assertThat(csr_names(csr), Equals(frozenset([name])))

    def test_encode_roundtrip(self):
        csr = csr_for_names([u'example.org'], KEY)
        self.assertThat(decode_csr(encode_csr(csr)), Equals(csr))

    def test_load_csr(self):
        """
        CSRs can be loaded from PEM, DER, or be given as objects.
        """
        csr = csr_for_names([u'example.org'], KEY)
        for data in [csr,
                     csr.public_bytes(serialization.Encoding.PEM),
                     csr.public_bytes(serialization.Encoding.DER)]:
            self.assertThat(load_csr(data), Equals(csr))

    def test_load_garbage(self):
        self.assertThat(
            lambda: load_csr(b'not a csr'), raises(ValueError))


class RetryAfterTests(TestCase):
    """
    Tests for `parse_retry_after`.
    """
    def test_absent(self):
        self.assertThat(parse_retry_after(None), Is(None))

    def test_seconds(self):
        self.assertThat(
            parse_retry_after(u'120', now=NOW),
            Equals(NOW + timedelta(seconds=120)))

    def test_http_date(self):
        self.assertThat(
            parse_retry_after(u'Fri, 01 Mar 2024 00:00:00 GMT'),
            Equals(datetime(2024, 3, 1, tzinfo=timezone.utc)))

    def test_bytes(self):
        self.assertThat(
            parse_retry_after(b'5', now=NOW),
            Equals(NOW + timedelta(seconds=5)))

    def test_default_now(self):
        """
        Delta-seconds are relative to the current time by default.
        """
        before = datetime.now(timezone.utc)
        when = parse_retry_after(u'60')
        self.assertTrue(
            before + timedelta(seconds=60) <= when <=
            datetime.now(timezone.utc) + timedelta(seconds=60))

    @example(120)
    @given(ts.retry_after_seconds())
    def test_forms_equivalent(self, seconds):
        """
        Delta-seconds and the HTTP-date for the same instant parse to the
        same instant.
        """
        date = http.datetimeToString(
            NOW.timestamp() + seconds).decode('ascii')
        self.assertThat(
            parse_retry_after(date, now=NOW),
            Equals(parse_retry_after(str(seconds), now=NOW)))

    @given(ts.malformed_retry_after())
    def test_malformed(self, value):
        """
        A malformed value is no hint, not an error.
        """
        self.assertThat(parse_retry_after(value, now=NOW), Is(None))


class MiscTests(TestCase):
    def test_clock_now(self):
        """
        `clock_now` is the aware datetime of the clock's time.
        """
        clock = Clock()
        clock.advance(NOW.timestamp())
        self.assertThat(clock_now(clock), Equals(NOW))

    def test_directory_url_type(self):
        """
        `check_directory_url_type` raises `TypeError` unless given a
        ``twisted.python.url.URL``.
        """
        self.assertThat(
            lambda: check_directory_url_type(u'https://example.org/dir'),
            raises(TypeError))
        check_directory_url_type(URL.fromText(u'https://example.org/dir'))

    def test_unknown_key_type(self):
        self.assertThat(
            lambda: generate_private_key(u'dsa'), raises(ValueError))
