"""
JWS-signed transport for the ACME protocol (RFC 8555).

                              directory
                                  |
                                  +--> newNonce
                                  |
      +----------+----------+-----+-----+------------+
      |          |          |           |            |
      |          |          |           |            |
      V          V          V           V            V
 newAccount   newAuthz   newOrder   revokeCert   keyChange
      |          |          |
      |          |          |
      V          |          V
   account       |        order --+--> finalize
                 |          |     |
                 |          |     +--> cert
                 |          V
                 +---> authorization
                           | ^
                           | | "up"
                           V |
                         challenge

                 ACME Resources and Relationships

Every request but the directory GET and the newNonce HEAD is a POST
carrying a JWS whose protected header holds a single-use nonce and the
target URL.  Reads are POST-as-GET: a signed POST with an empty payload.

1. session = Session.from_url(DIRECTORY_URL, key)
2. nonces are fetched on demand and replenished from every response
3. account = Account.create(session, contacts, terms_agreed=True)
4. order = Order.create(session, [list, of, domains])
5. order.authorizations() - POST-as-GET of each authorization URL
6. authorization.challenge(u'http-01').trigger()
7. poll_until_terminal(authorization) / order.poll()
8. order.finalize(csr)
9. poll_until_terminal(order)
10. order.fetch_certificate()
"""
import json

import attr
import josepy as jose
import requests
from acme import jws, messages
from josepy.errors import DeserializationError
from requests.utils import default_user_agent, parse_header_links

from acmestate import __version__
from acmestate.errors import BadNonceError, TransportError, protocol_error
from acmestate.logging import (
    LOG_JWS_ADD_NONCE,
    LOG_JWS_BAD_NONCE_RETRY,
    LOG_JWS_CHECK_RESPONSE,
    LOG_JWS_GET,
    LOG_JWS_GET_NONCE,
    LOG_JWS_HEAD,
    LOG_JWS_POST,
    LOG_JWS_REQUEST,
    LOG_JWS_SIGN,
    )
from acmestate.nonce import NonceCache
from acmestate.util import parse_retry_after

_DEFAULT_TIMEOUT = 40

JSON_CONTENT_TYPE = u'application/json'
JOSE_CONTENT_TYPE = u'application/jose+json'
JSON_ERROR_CONTENT_TYPE = u'application/problem+json'
DER_CONTENT_TYPE = u'application/pkix-cert'
PEM_CHAIN_TYPE = u'application/pem-certificate-chain'
REPLAY_NONCE_HEADER = u'Replay-Nonce'


@attr.s(frozen=True)
class Response(object):
    """
    What the transport hands back for a request: status code, headers and
    body, plus the parsed ``Retry-After`` hint.

    :ivar retry_after: When the CA suggests polling again, or ``None``.
    :vartype retry_after: `~datetime.datetime`
    """
    url = attr.ib()
    code = attr.ib()
    headers = attr.ib(repr=False)
    content = attr.ib(repr=False)
    retry_after = attr.ib(default=None)

    @classmethod
    def from_requests(cls, response):
        """
        Wrap a `requests.Response`.
        """
        return cls(
            url=response.url,
            code=response.status_code,
            headers=response.headers,
            content=response.content,
            retry_after=parse_retry_after(
                response.headers.get(u'Retry-After')),
            )

    @property
    def content_type(self):
        """
        The media type of the body, without parameters.
        """
        value = self.headers.get(u'Content-Type')
        if value is None:
            return None
        return value.split(u';')[0].strip().lower()

    @property
    def location(self):
        return self.headers.get(u'Location')

    def links(self, rel):
        """
        The targets of the ``Link`` header fields with the given relation.

        :param str rel: The link relation, e.g. ``u'up'``.

        :rtype: List[str]
        """
        value = self.headers.get(u'Link')
        if not value:
            return []
        return [
            link[u'url']
            for link in parse_header_links(value)
            if link.get(u'rel') == rel]

    def json(self):
        """
        Decode the body as JSON.

        :raises TransportError: If the body is not JSON.
        """
        try:
            return json.loads(self.content.decode('utf-8'))
        except ValueError:
            raise TransportError(
                reason=u'Response is not JSON.', url=self.url,
                status_code=self.code)


def decode_body(response, body_type):
    """
    Decode the JSON body of a response into an ACME message.

    :raises TransportError: If the body is not a valid ``body_type``.
    """
    try:
        return body_type.from_json(response.json())
    except DeserializationError as error:
        raise TransportError(
            reason=u'Cannot decode {}: {}'.format(body_type.__name__, error),
            url=response.url, status_code=response.code)


class JWSClient(object):
    """
    HTTP client using JWS-signed messages for ACME.

    Safe to share between threads: the only shared state is the
    `~acmestate.nonce.NonceCache`, which does its own locking.
    """
    timeout = _DEFAULT_TIMEOUT

    def __init__(self, http=None, nonces=None, user_agent=None,
                 timeout=None):
        if http is None:
            http = requests.Session()
        if nonces is None:
            nonces = NonceCache()
        if user_agent is None:
            user_agent = u'acmestate/{} {}'.format(
                __version__, default_user_agent())
        if timeout is not None:
            self.timeout = timeout
        self._http = http
        self._user_agent = user_agent
        self.nonces = nonces
        # URL from where a new nonce can be obtained.
        self._new_nonce = None

    def start(self, directory):
        """
        Prepare for ACME operations based on 'directory' url.

        :param str directory: The URL to the ACME v2 directory.

        :return: The directory.
        :rtype: `~acme.messages.Directory`
        """
        response = self.get(directory)
        directory = decode_body(response, messages.Directory)
        try:
            self._new_nonce = directory[u'newNonce']
        except KeyError:
            raise TransportError(
                reason=u'Directory has no newNonce URL', url=response.url)
        return directory

    def close(self):
        """
        Close any persistent connection to the CA.
        """
        self._http.close()

    def _wrap_in_jws(self, nonce, obj, url, key, alg, kid=None):
        """
        Wrap a ``JSONDeSerializable`` object in ACME JWS.

        :param ~josepy.interfaces.JSONDeSerializable obj: The payload, or
            ``None`` for a POST-as-GET.
        :param bytes nonce:
        :param str url: URL to the request for which we wrap the payload.
        :param ~josepy.jwk.JWK key: The signing key.
        :param str kid: The account URL; when ``None`` the public key is
            embedded instead.

        :rtype: `bytes`
        :return: JSON-encoded data
        """
        with LOG_JWS_SIGN(key_type=key.typ, alg=alg.name,
                          nonce=nonce, kid=kid, url=url):
            if obj is None:
                jobj = b''
            else:
                jobj = obj.json_dumps().encode()
            return (
                jws.JWS.sign(
                    payload=jobj,
                    key=key,
                    alg=alg,
                    nonce=nonce,
                    url=url,
                    kid=kid,
                    )
                .json_dumps()
                .encode())

    @classmethod
    def _check_response(cls, response, content_type=JSON_CONTENT_TYPE):
        """
        Check response content and its type.

        ..  note::

            Unlike :mod:`acme.client`, checking is strict.

        :param str content_type: Expected Content-Type response header, or
            ``None`` to accept any.

        :raises .ProtocolError: If server response body carries HTTP Problem
            (RFC 7807).
        :raises .TransportError: In case of other networking errors.
        """
        with LOG_JWS_CHECK_RESPONSE(
                code=response.code,
                response_content_type=response.content_type,
                expected_content_type=content_type):
            if not 200 <= response.code < 300:
                problem = None
                try:
                    problem = messages.Error.from_json(response.json())
                except (TransportError, DeserializationError, TypeError,
                        AttributeError):
                    pass
                if problem is None:
                    raise TransportError(
                        reason=u'Error response is not a problem document.',
                        url=response.url, status_code=response.code)
                raise protocol_error(
                    problem,
                    status_code=response.code,
                    retry_after=response.retry_after,
                    url=response.url)
            if content_type is None:
                return response
            if response.content_type != content_type:
                raise TransportError(
                    reason=u'Unexpected response Content-Type: {!r}. '
                    u'Expecting {!r}.'.format(
                        response.content_type, content_type),
                    url=response.url, status_code=response.code)
            if content_type == JSON_CONTENT_TYPE:
                response.json()
            return response

    def _send_request(self, method, url, **kwargs):
        """
        Send HTTP request.

        :param str method: The HTTP method to use.
        :param str url: The URL to make the request to.

        :raises TransportError: If no response was received.

        :rtype: `Response`
        """
        with LOG_JWS_REQUEST(method=method, url=url) as action:
            headers = kwargs.setdefault('headers', {})
            headers.setdefault(u'User-Agent', self._user_agent)
            kwargs.setdefault('timeout', self.timeout)
            try:
                raw = self._http.request(method, url, **kwargs)
            except requests.exceptions.RequestException as error:
                raise TransportError(reason=str(error), url=url)
            response = Response.from_requests(raw)
            action.add_success_fields(
                code=response.code, content_type=response.content_type)
            return response

    def head(self, url, **kwargs):
        """
        Send HEAD request without checking the response.

        :param str url: The URL to make the request to.
        """
        with LOG_JWS_HEAD():
            return self._send_request(u'HEAD', url, **kwargs)

    def get(self, url, content_type=JSON_CONTENT_TYPE, **kwargs):
        """
        Send an unsigned GET request and check the response.  Only the
        directory is fetched this way; everything else is a POST-as-GET.

        :param str url: The URL to make the request to.

        :raises .ProtocolError: If server response body carries HTTP Problem.
        :raises .TransportError: In case of other protocol errors.

        :rtype: `Response`
        """
        with LOG_JWS_GET():
            return self._check_response(
                self._send_request(u'GET', url, **kwargs),
                content_type=content_type)

    @staticmethod
    def _decode_nonce(response):
        raw = response.headers.get(REPLAY_NONCE_HEADER)
        if raw is None:
            return None
        try:
            return jws.Header._fields['nonce'].decode(raw)
        except DeserializationError:
            return None

    def _add_nonce(self, response):
        """
        Store the nonce from a response we received.  A response without a
        usable nonce only means the next request has to fetch one.

        :param Response response: The HTTP response.
        """
        with LOG_JWS_ADD_NONCE(
                raw_nonce=response.headers.get(REPLAY_NONCE_HEADER)):
            nonce = self._decode_nonce(response)
            if nonce is not None:
                self.nonces.add(nonce)

    def _fetch_nonce(self):
        """
        Ask the newNonce endpoint for a fresh nonce.
        """
        if self._new_nonce is None:
            raise TransportError(
                reason=u'No newNonce URL known; start() was not called.')
        response = self.head(self._new_nonce)
        self._check_response(response, content_type=None)
        nonce = self._decode_nonce(response)
        if nonce is None:
            raise TransportError(
                reason=u'Missing or malformed Replay-Nonce header.',
                url=response.url, status_code=response.code)
        return nonce

    def _get_nonce(self):
        """
        Get a nonce to use in a request, removing it from the nonces on hand.
        """
        with LOG_JWS_GET_NONCE() as action:
            nonce = self.nonces.take(self._fetch_nonce)
            action.add_success_fields(nonce=nonce)
            return nonce

    def _post(self, url, obj, key, alg, kid=None,
              content_type=JSON_CONTENT_TYPE, accept=None):
        """
        POST an object once and check the response.
        """
        with LOG_JWS_POST(url=url):
            data = self._wrap_in_jws(
                self._get_nonce(), obj, url, key, alg, kid)
            headers = {u'Content-Type': JOSE_CONTENT_TYPE}
            if accept is not None:
                headers[u'Accept'] = accept
            response = self._send_request(
                u'POST', url, data=data, headers=headers)
            self._add_nonce(response)
            return self._check_response(response, content_type=content_type)

    def post(self, url, obj, key, alg=jose.RS256, kid=None,
             content_type=JSON_CONTENT_TYPE, accept=None):
        """
        POST an object wrapped in a JWS and check the response.  Retry once
        with a fresh nonce if a badNonce error is received.

        :param str url: The URL to request.
        :param ~josepy.interfaces.JSONDeSerializable obj: The serializable
            payload of the request, or ``None`` for a POST-as-GET.
        :param ~josepy.jwk.JWK key: The key to sign with.
        :param alg: The signing algorithm; must suit ``key``.
        :param str kid: The account URL, or ``None`` to embed the public key.
        :param str content_type: The expected content type of the response.
            By default, JSON.
        :param str accept: Value for the ``Accept`` request header.

        :raises .ProtocolError: If server response body carries HTTP Problem.
        :raises .BadNonceError: If the retry was rejected too.
        :raises .TransportError: In case of other protocol errors.

        :rtype: `Response`
        """
        try:
            return self._post(url, obj, key, alg, kid, content_type, accept)
        except BadNonceError:
            LOG_JWS_BAD_NONCE_RETRY(url=url).write()
            self.nonces.clear()
            return self._post(url, obj, key, alg, kid, content_type, accept)


__all__ = [
    'JWSClient', 'Response', 'decode_body', 'JSON_CONTENT_TYPE',
    'JOSE_CONTENT_TYPE', 'JSON_ERROR_CONTENT_TYPE', 'DER_CONTENT_TYPE',
    'PEM_CHAIN_TYPE', 'REPLAY_NONCE_HEADER']
