"""
Utilities for testing with acmestate.

`FakeACMEServer` is an in-memory ACME CA.  It is mounted on a
`requests.Session` through a ``requests_mock`` adapter, so the real
transport, signing and nonce handling are exercised without a network.
"""
import itertools
import json
import os
from datetime import datetime, timedelta, timezone

import attr
import josepy as jose
import requests
import requests_mock
from acme import jws
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID
from josepy.errors import DeserializationError
from josepy.json_util import encode_b64jose
from twisted.python.url import URL
from twisted.web import http

from acmestate.client import (
    JSON_CONTENT_TYPE, JSON_ERROR_CONTENT_TYPE, PEM_CHAIN_TYPE,
    REPLAY_NONCE_HEADER)
from acmestate.session import Session
from acmestate.util import (
    csr_names, decode_cert, decode_csr, generate_private_key, name_set)

ERROR_PREFIX = u'urn:ietf:params:acme:error:'

_FAILED = frozenset([u'invalid', u'deactivated', u'expired', u'revoked'])


def _rfc3339(when):
    return when.strftime(u'%Y-%m-%dT%H:%M:%SZ')


def _now():
    return datetime.now(timezone.utc)


def _pem(certificate):
    return certificate.public_bytes(serialization.Encoding.PEM)


@attr.s(auto_exc=True)
class Problem(Exception):
    """
    An error the fake CA answers with, as a problem document.

    :ivar str code: The ACME error code, e.g. ``u'rateLimited'``.
    """
    code = attr.ib()
    detail = attr.ib(default=u'')
    status = attr.ib(default=http.BAD_REQUEST)
    retry_after = attr.ib(default=None)

    def to_json(self):
        return {
            u'type': ERROR_PREFIX + self.code,
            u'detail': self.detail,
            u'status': self.status,
            }


@attr.s(frozen=True)
class SignedRequest(object):
    """
    A signed request as received by the fake CA, whether accepted or not.

    :ivar str nonce: The encoded nonce of the protected header.
    :ivar str kid: The account URL, if signed for an account.
    :ivar ~josepy.jwk.JWK jwk: The embedded key, if any.
    :ivar payload: The decoded JSON payload, or ``None`` for a POST-as-GET.
    """
    url = attr.ib()
    nonce = attr.ib()
    kid = attr.ib()
    jwk = attr.ib(repr=False)
    payload = attr.ib()


@attr.s
class _Signed(object):
    url = attr.ib()
    header = attr.ib()
    payload = attr.ib()
    key = attr.ib()
    account = attr.ib()


@attr.s
class _Reply(object):
    code = attr.ib(default=http.OK)
    body = attr.ib(default=None)
    content_type = attr.ib(default=JSON_CONTENT_TYPE)
    headers = attr.ib(default=attr.Factory(dict))


class FakeACMEServer(object):
    """
    A fake ACME CA, keeping everything in memory.

    Challenges are never validated by the fake CA itself: a triggered
    challenge stays ``processing`` until the test calls
    `complete_challenge`.  Orders become ``ready`` once all their
    authorizations are valid; after finalization the order stays
    ``processing`` for ``processing_polls`` fetches, and is then issued.

    :ivar list received: Every `SignedRequest` received.
    :ivar int bad_nonce_failures: How many more signed requests to reject
        with ``badNonce`` regardless of their nonce.
    :ivar bool send_nonces: Whether responses to signed requests carry a
        ``Replay-Nonce``.
    :ivar bool malformed_nonces: Whether those nonces are not base64url.
    :ivar bool head_nonces: Whether the newNonce endpoint hands out nonces.
    :ivar dict retry_after: ``Retry-After`` header values to send with the
        responses for a resource, by location.
    :ivar list errors: `Problem` instances to answer the next signed requests
        with, in order.
    :ivar dict eab_keys: External account binding MAC keys, by key
        identifier.
    :ivar dict revoked: Revocation reasons, by certificate serial number.
    """
    def __init__(self, base=u'https://ca.example'):
        self.base = base
        self.adapter = requests_mock.Adapter()
        self.adapter.register_uri(
            requests_mock.ANY, requests_mock.ANY, content=self._handle)
        self.endpoints = {
            u'newNonce': u'/new-nonce',
            u'newAccount': u'/new-account',
            u'newOrder': u'/new-order',
            u'newAuthz': u'/new-authz',
            u'revokeCert': u'/revoke-cert',
            u'keyChange': u'/key-change',
            }
        self.meta = {u'termsOfService': base + u'/terms'}
        self.challenge_types = [u'http-01', u'dns-01']
        self.received = []
        self.accounts = {}
        self.account_keys = {}
        self.orders = {}
        self.authorizations = {}
        self.challenges = {}
        self.certificates = {}
        self.revoked = {}
        self.eab_keys = {}
        self.retry_after = {}
        self.errors = []
        self.bad_nonce_failures = 0
        self.send_nonces = True
        self.malformed_nonces = False
        self.head_nonces = True
        self.processing_polls = 0
        self.order_names_override = None
        self._nonces = set()
        self._counter = itertools.count(1)
        self._parents = {}
        self._finalize_urls = {}
        self._csrs = {}
        self._processing = {}
        self._issuer_key = generate_private_key(u'ec')
        self._issuer = self._make_issuer()

    @property
    def directory_url(self):
        return URL.fromText(self.base + u'/directory')

    def http_session(self):
        """
        A `requests.Session` talking to this CA.
        """
        session = requests.Session()
        session.mount(self.base, self.adapter)
        return session

    def session(self, key, alg=jose.RS256, **kwargs):
        """
        A `~acmestate.session.Session` against this CA.
        """
        return Session.from_url(
            self.directory_url, key, alg=alg, http=self.http_session(),
            **kwargs)

    @property
    def posts(self):
        """
        How many signed requests were received.
        """
        return len(self.received)

    def directory(self):
        directory = {
            name: self.base + path for name, path in self.endpoints.items()}
        directory[u'meta'] = dict(self.meta)
        return directory

    def complete_challenge(self, location, valid=True,
                           detail=u'Validation failed'):
        """
        Finish validating a challenge, updating its authorization and the
        orders depending on it.
        """
        challenge = self.challenges[location]
        authorization = self.authorizations[self._parents[location]]
        if valid:
            challenge[u'status'] = u'valid'
            challenge[u'validated'] = _rfc3339(_now())
            authorization[u'status'] = u'valid'
        else:
            challenge[u'status'] = u'invalid'
            challenge[u'error'] = Problem(
                u'unauthorized', detail, http.FORBIDDEN).to_json()
            authorization[u'status'] = u'invalid'
        self._update_orders()

    def set_status(self, location, status):
        """
        Make the CA report a status for a resource, no matter what.
        """
        for resources in (self.accounts, self.orders, self.authorizations,
                          self.challenges):
            if location in resources:
                resources[location][u'status'] = status
                return
        raise KeyError(location)

    def authorization_json(self, location):
        authorization = dict(self.authorizations[location])
        authorization[u'challenges'] = [
            dict(self.challenges[challenge])
            for challenge in authorization[u'challenges']]
        return authorization

    def _make_issuer(self):
        name = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, u'Fake ACME Issuer')])
        return (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self._issuer_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(_now() - timedelta(days=1))
            .not_valid_after(_now() + timedelta(days=3650))
            .add_extension(
                x509.BasicConstraints(ca=True, path_length=0), critical=True)
            .sign(self._issuer_key, hashes.SHA256()))

    def _url(self, template):
        return self.base + template.format(next(self._counter))

    def _new_nonce(self):
        if self.malformed_nonces:
            return u'x'
        nonce = encode_b64jose(os.urandom(16))
        self._nonces.add(nonce)
        return nonce

    def _handle(self, request, context):
        try:
            reply = self._dispatch(request)
        except Problem as problem:
            reply = _Reply(
                code=problem.status, body=problem.to_json(),
                content_type=JSON_ERROR_CONTENT_TYPE)
            if problem.retry_after is not None:
                reply.headers[u'Retry-After'] = problem.retry_after
        context.status_code = reply.code
        context.headers.update(reply.headers)
        if request.method == u'POST':
            send_nonce = self.send_nonces
        else:
            send_nonce = request.method == u'HEAD' and self.head_nonces
        if send_nonce:
            context.headers[REPLAY_NONCE_HEADER] = self._new_nonce()
        if reply.body is None:
            return b''
        context.headers[u'Content-Type'] = reply.content_type
        if isinstance(reply.body, bytes):
            return reply.body
        return json.dumps(reply.body).encode('utf-8')

    def _dispatch(self, request):
        if not request.url.startswith(self.base):
            raise Problem(u'malformed', u'Unknown host', http.NOT_FOUND)
        path = request.url[len(self.base):]
        if request.method == u'GET' and path == u'/directory':
            return _Reply(body=self.directory())
        if (request.method == u'HEAD' and
                path == self.endpoints.get(u'newNonce')):
            return _Reply()
        if request.method != u'POST':
            raise Problem(
                u'malformed', u'Method not allowed', http.NOT_ALLOWED)

        signed = self._verify(request)
        if self.errors:
            raise self.errors.pop(0)

        handlers = {
            u'newAccount': self._new_account,
            u'newOrder': self._new_order,
            u'newAuthz': self._new_authorization_request,
            u'revokeCert': self._revoke,
            u'keyChange': self._key_change,
            }
        for name, endpoint in self.endpoints.items():
            if path == endpoint and name in handlers:
                return handlers[name](signed)
        url = request.url
        if url in self.accounts:
            return self._account(signed, url)
        if url in self.orders:
            return self._order(url)
        if url in self._finalize_urls:
            return self._finalize(signed, self._finalize_urls[url])
        if url in self.authorizations:
            return self._authorization(signed, url)
        if url in self.challenges:
            return self._challenge(signed, url)
        if url in self.certificates:
            return self._certificate(url)
        raise Problem(u'malformed', u'No such resource', http.NOT_FOUND)

    def _verify(self, request):
        try:
            signed = jws.JWS.json_loads(request.body)
        except (DeserializationError, ValueError, TypeError):
            raise Problem(u'malformed', u'Request is not a JWS')
        header = signed.signature.combined
        try:
            payload = None
            if signed.payload:
                payload = json.loads(signed.payload.decode('utf-8'))
        except ValueError:
            raise Problem(u'malformed', u'Payload is not JSON')
        nonce = None
        if header.nonce is not None:
            nonce = encode_b64jose(header.nonce)
        self.received.append(SignedRequest(
            url=request.url, nonce=nonce, kid=header.kid, jwk=header.jwk,
            payload=payload))

        if nonce not in self._nonces:
            raise Problem(u'badNonce', u'Unknown or reused nonce')
        self._nonces.discard(nonce)
        if self.bad_nonce_failures > 0:
            self.bad_nonce_failures -= 1
            raise Problem(u'badNonce', u'Nonce rejected')
        if header.url != request.url:
            raise Problem(u'unauthorized', u'JWS url does not match request')
        if (header.kid is None) == (header.jwk is None):
            raise Problem(u'malformed', u'Exactly one of kid, jwk is required')
        if header.kid is not None:
            account = self.accounts.get(header.kid)
            if account is None:
                raise Problem(u'accountDoesNotExist', u'No such account')
            if account[u'status'] != u'valid':
                raise Problem(
                    u'unauthorized', u'Account is not valid', http.FORBIDDEN)
            key = self.account_keys[header.kid]
        else:
            key = header.jwk
        if not signed.verify(key):
            raise Problem(u'malformed', u'Bad signature')
        return _Signed(
            url=request.url, header=header, payload=payload, key=key,
            account=header.kid)

    def _resource_reply(self, location, body, code=http.OK, created=False,
                        links=()):
        headers = {}
        if created:
            headers[u'Location'] = location
        if location in self.retry_after:
            headers[u'Retry-After'] = self.retry_after[location]
        if links:
            headers[u'Link'] = u', '.join(
                u'<{}>;rel="{}"'.format(url, rel) for url, rel in links)
        return _Reply(code=code, body=body, headers=headers)

    def _account_for_key(self, key):
        thumbprint = key.thumbprint()
        for location, account_key in self.account_keys.items():
            if account_key.thumbprint() == thumbprint:
                return location
        return None

    def _check_eab(self, eab, signed):
        if eab is None:
            raise Problem(
                u'externalAccountRequired', u'External binding required')
        try:
            binding = jws.JWS.from_json(eab)
        except (DeserializationError, TypeError):
            raise Problem(u'malformed', u'Bad external account binding')
        hmac_key = self.eab_keys.get(binding.signature.combined.kid)
        if (hmac_key is None or
                not binding.verify(jose.JWKOct(key=jose.b64decode(hmac_key)))):
            raise Problem(
                u'unauthorized', u'Bad external account binding',
                http.FORBIDDEN)
        if json.loads(binding.payload.decode('utf-8')) != signed.key.to_json():
            raise Problem(
                u'unauthorized', u'External binding is for another key',
                http.FORBIDDEN)

    def _new_account(self, signed):
        if signed.header.jwk is None:
            raise Problem(u'malformed', u'newAccount requires a jwk')
        payload = signed.payload or {}
        links = [(self.meta[u'termsOfService'], u'terms-of-service')]
        location = self._account_for_key(signed.key)
        if location is not None:
            return self._resource_reply(
                location, self.accounts[location], created=True, links=links)
        if payload.get(u'onlyReturnExisting'):
            raise Problem(u'accountDoesNotExist', u'No account for this key')
        if (self.meta.get(u'externalAccountRequired') or
                u'externalAccountBinding' in payload):
            self._check_eab(payload.get(u'externalAccountBinding'), signed)
        location = self._url(u'/acct/{}')
        account = {
            u'status': u'valid',
            u'contact': list(payload.get(u'contact', [])),
            }
        if payload.get(u'termsOfServiceAgreed'):
            account[u'termsOfServiceAgreed'] = True
        self.accounts[location] = account
        self.account_keys[location] = signed.key
        return self._resource_reply(
            location, account, code=http.CREATED, created=True, links=links)

    def _account(self, signed, location):
        if signed.account != location:
            raise Problem(
                u'unauthorized', u'Not the account of the signer',
                http.FORBIDDEN)
        account = self.accounts[location]
        payload = signed.payload or {}
        if u'contact' in payload:
            account[u'contact'] = list(payload[u'contact'])
        if payload.get(u'status') == u'deactivated':
            account[u'status'] = u'deactivated'
        return self._resource_reply(location, account)

    def _key_change(self, signed):
        if signed.account is None:
            raise Problem(u'malformed', u'keyChange is signed by the account')
        try:
            inner = jws.JWS.from_json(signed.payload)
        except (DeserializationError, TypeError):
            raise Problem(u'malformed', u'Inner JWS expected')
        header = inner.signature.combined
        if (header.jwk is None or header.kid is not None or
                not inner.verify(header.jwk)):
            raise Problem(u'malformed', u'Bad inner JWS')
        if header.url != signed.url:
            raise Problem(u'unauthorized', u'Inner JWS url does not match')
        change = json.loads(inner.payload.decode('utf-8'))
        old_key = self.account_keys[signed.account]
        if (change.get(u'account') != signed.account or
                change.get(u'oldKey') != old_key.to_json()):
            raise Problem(
                u'unauthorized', u'Key change is for another account',
                http.FORBIDDEN)
        if self._account_for_key(header.jwk) is not None:
            raise Problem(
                u'conflict', u'New key is already in use', http.CONFLICT)
        self.account_keys[signed.account] = header.jwk
        return self._resource_reply(
            signed.account, self.accounts[signed.account])

    def _new_authorization(self, value):
        wildcard = value.startswith(u'*.')
        location = self._url(u'/authz/{}')
        challenges = []
        for typ in [u'dns-01'] if wildcard else self.challenge_types:
            challenge = self._url(u'/chall/{}')
            self.challenges[challenge] = {
                u'type': typ,
                u'url': challenge,
                u'status': u'pending',
                u'token': encode_b64jose(os.urandom(32)),
                }
            self._parents[challenge] = location
            challenges.append(challenge)
        authorization = {
            u'identifier': {
                u'type': u'dns',
                u'value': value[2:] if wildcard else value,
                },
            u'status': u'pending',
            u'expires': _rfc3339(_now() + timedelta(days=7)),
            u'challenges': challenges,
            }
        if wildcard:
            authorization[u'wildcard'] = True
        self.authorizations[location] = authorization
        return location

    def _new_authorization_request(self, signed):
        identifier = (signed.payload or {}).get(u'identifier') or {}
        value = identifier.get(u'value')
        if not value or value.startswith(u'*.'):
            raise Problem(u'rejectedIdentifier', u'Cannot pre-authorize')
        location = self._new_authorization(value)
        return self._resource_reply(
            location, self.authorization_json(location), code=http.CREATED,
            created=True)

    def _new_order(self, signed):
        payload = signed.payload or {}
        identifiers = payload.get(u'identifiers') or []
        if not identifiers:
            raise Problem(u'malformed', u'No identifiers')
        for identifier in identifiers:
            if identifier.get(u'type') != u'dns':
                raise Problem(
                    u'unsupportedIdentifier', u'Only dns is supported')
        authorizations = [
            self._new_authorization(identifier[u'value'])
            for identifier in identifiers]
        if self.order_names_override is not None:
            identifiers = [
                {u'type': u'dns', u'value': name}
                for name in self.order_names_override]
        location = self._url(u'/order/{}')
        finalize = self._url(u'/finalize/{}')
        order = {
            u'status': u'pending',
            u'expires': _rfc3339(_now() + timedelta(days=7)),
            u'identifiers': identifiers,
            u'authorizations': authorizations,
            u'finalize': finalize,
            }
        for name in (u'notBefore', u'notAfter'):
            if name in payload:
                order[name] = payload[name]
        self.orders[location] = order
        self._finalize_urls[finalize] = location
        return self._resource_reply(
            location, order, code=http.CREATED, created=True)

    def _update_orders(self):
        for order in self.orders.values():
            if order[u'status'] != u'pending':
                continue
            statuses = [
                self.authorizations[location][u'status']
                for location in order[u'authorizations']]
            if any(status in _FAILED for status in statuses):
                order[u'status'] = u'invalid'
            elif all(status == u'valid' for status in statuses):
                order[u'status'] = u'ready'

    def _authorization(self, signed, location):
        authorization = self.authorizations[location]
        if (signed.payload is not None and
                signed.payload.get(u'status') == u'deactivated'):
            if authorization[u'status'] not in (u'pending', u'valid'):
                raise Problem(
                    u'malformed', u'Authorization cannot be deactivated')
            authorization[u'status'] = u'deactivated'
            self._update_orders()
        return self._resource_reply(
            location, self.authorization_json(location))

    def _challenge(self, signed, location):
        challenge = self.challenges[location]
        if signed.payload is not None and challenge[u'status'] == u'pending':
            challenge[u'status'] = u'processing'
        return self._resource_reply(
            location, challenge, links=[(self._parents[location], u'up')])

    def _order(self, location):
        order = self.orders[location]
        if order[u'status'] == u'processing' and location in self._csrs:
            if self._processing[location] > 0:
                self._processing[location] -= 1
            else:
                self._issue(location)
        return self._resource_reply(location, order)

    def _finalize(self, signed, location):
        order = self.orders[location]
        if order[u'status'] != u'ready':
            raise Problem(
                u'orderNotReady', u'Order is not ready', http.FORBIDDEN)
        try:
            csr = decode_csr(signed.payload[u'csr'])
        except (KeyError, TypeError, DeserializationError):
            raise Problem(u'badCSR', u'Cannot decode CSR')
        requested = name_set(
            identifier[u'value'] for identifier in order[u'identifiers'])
        if csr_names(csr) != requested:
            raise Problem(u'badCSR', u'CSR names do not match the order')
        order[u'status'] = u'processing'
        self._csrs[location] = csr
        self._processing[location] = self.processing_polls
        return self._resource_reply(location, order)

    def _issue(self, location):
        csr = self._csrs.pop(location)
        leaf = (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(self._issuer.subject)
            .public_key(csr.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(_now() - timedelta(hours=1))
            .not_valid_after(_now() + timedelta(days=90))
            .add_extension(
                x509.SubjectAlternativeName([
                    x509.DNSName(name) for name in sorted(csr_names(csr))]),
                critical=False)
            .sign(self._issuer_key, hashes.SHA256()))
        certificate = self._url(u'/cert/{}')
        alternate = certificate + u'/alternate'
        self.certificates[certificate] = (
            _pem(leaf) + _pem(self._issuer), [alternate])
        self.certificates[alternate] = (_pem(leaf), [])
        order = self.orders[location]
        order[u'certificate'] = certificate
        order[u'status'] = u'valid'

    def _certificate(self, location):
        chain, alternates = self.certificates[location]
        reply = self._resource_reply(
            location, chain, links=[(url, u'alternate') for url in alternates])
        reply.content_type = PEM_CHAIN_TYPE
        return reply

    def _revoke(self, signed):
        try:
            certificate = decode_cert(signed.payload[u'certificate'])
        except (KeyError, TypeError, DeserializationError):
            raise Problem(u'malformed', u'Cannot decode certificate')
        if signed.account is None:
            certificate_key = jose.JWK.load(
                certificate.public_key().public_bytes(
                    serialization.Encoding.PEM,
                    serialization.PublicFormat.SubjectPublicKeyInfo))
            if certificate_key.thumbprint() != signed.key.thumbprint():
                raise Problem(
                    u'unauthorized', u'Not signed by the certificate key',
                    http.FORBIDDEN)
        if certificate.serial_number in self.revoked:
            raise Problem(u'alreadyRevoked', u'Certificate already revoked')
        self.revoked[certificate.serial_number] = signed.payload.get(
            u'reason', 0)
        return _Reply()


__all__ = ['FakeACMEServer', 'Problem', 'SignedRequest', 'ERROR_PREFIX']
