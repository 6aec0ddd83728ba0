from cryptography.hazmat.primitives import serialization
from josepy.jwa import ES256
from josepy.jwk import JWKEC
from requests.structures import CaseInsensitiveDict
from testtools import TestCase
from testtools.matchers import (
    Equals, HasLength, Is, MatchesException, MatchesStructure, Raises,
    raises)
from twisted.web import http

from acmestate.certificate import CertificateChain, revoke
from acmestate.client import PEM_CHAIN_TYPE, Response
from acmestate.errors import ProtocolError, TransportError
from acmestate.test.doubles import OTHER_RSA_KEY, registered, valid_order
from acmestate.test.matchers import ValidForName

NAMES = [u'example.org']


def problem(code):
    return Raises(MatchesException(
        ProtocolError, MatchesStructure(code=Equals(code))))


class CertificateChainTests(TestCase):
    """
    Tests for `acmestate.certificate.CertificateChain`.
    """
    def test_fetch(self):
        server, session = registered()
        order, _ = valid_order(server, session, NAMES)
        chain = order.fetch_certificate()
        self.assertThat(
            chain,
            MatchesStructure(
                location=Equals(order.body.certificate),
                pem=Equals(server.certificates[order.body.certificate][0])))
        self.assertThat(chain.certificates, HasLength(2))
        self.assertThat(chain.leaf, ValidForName(u'example.org'))
        self.assertThat(
            server.received[-1].payload, Is(None))

    def test_no_certificate(self):
        response = Response(
            url=u'https://ca.example/cert/1', code=http.OK,
            headers=CaseInsensitiveDict({u'Content-Type': PEM_CHAIN_TYPE}),
            content=b'nothing to see here')
        self.assertThat(
            lambda: CertificateChain.from_response(response),
            raises(TransportError))


class RevokeTests(TestCase):
    """
    Tests for `acmestate.certificate.revoke`.
    """
    def setUp(self):
        super(RevokeTests, self).setUp()
        self.server, self.session = registered()
        order, self.key = valid_order(self.server, self.session, NAMES)
        self.chain = order.fetch_certificate()
        self.serial = self.chain.leaf.serial_number

    def test_by_account(self):
        revoke(self.session, self.chain)
        self.assertThat(self.server.revoked, Equals({self.serial: 0}))
        self.assertThat(
            self.server.received[-1].kid,
            Equals(self.session.account_location))

    def test_reason(self):
        revoke(self.session, self.chain.leaf, reason=4)
        self.assertThat(self.server.revoked, Equals({self.serial: 4}))

    def test_encoded(self):
        """
        The certificate can be given as PEM or DER.
        """
        revoke(self.session, self.chain.certificates[0].as_bytes())
        self.assertThat(self.server.revoked, Equals({self.serial: 0}))
        self.server.revoked.clear()
        revoke(
            self.session,
            self.chain.leaf.public_bytes(serialization.Encoding.DER))
        self.assertThat(self.server.revoked, Equals({self.serial: 0}))

    def test_already_revoked(self):
        revoke(self.session, self.chain)
        self.assertThat(
            lambda: revoke(self.session, self.chain),
            problem(u'alreadyRevoked'))

    def test_by_certificate_key(self):
        """
        Signed with the certificate key, the request embeds that key and
        needs no account.
        """
        session = self.server.session(OTHER_RSA_KEY)
        key = JWKEC(key=self.key)
        revoke(session, self.chain, key=key, alg=ES256)
        self.assertThat(self.server.revoked, Equals({self.serial: 0}))
        self.assertThat(
            self.server.received[-1],
            MatchesStructure(kid=Is(None), jwk=Equals(key.public_key())))

    def test_by_other_key(self):
        """
        A key that is neither the account's nor the certificate's can not
        revoke.
        """
        session = self.server.session(OTHER_RSA_KEY)
        self.assertThat(
            lambda: revoke(session, self.chain, key=OTHER_RSA_KEY),
            problem(u'unauthorized'))
        self.assertThat(self.server.revoked, Equals({}))
