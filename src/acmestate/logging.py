"""
Eliot message and action definitions.
"""
from operator import methodcaller

from eliot import ActionType, Field, MessageType, fields
from josepy.json_util import encode_b64jose


def _status_name(status):
    if status is None:
        return None
    return status.name


NONCE = Field(
    u'nonce',
    encode_b64jose,
    u'A nonce value')

LOCATION = Field.for_types(
    u'location', [str, None], u'The location URL of an ACME resource')

STATUS = Field(
    u'status', _status_name, u'The status of an ACME resource')

RETRY_AFTER = Field(
    u'retry_after',
    lambda when: None if when is None else when.isoformat(),
    u'When the CA suggested to poll again')

LOG_JWS_SIGN = ActionType(
    u'acmestate:jws:sign',
    fields(NONCE,
           Field.for_types(u'kid', [str, None], u'Account key identifier'),
           key_type=str, alg=str, url=str),
    fields(),
    u'Signing a message with JWS')

LOG_JWS_HEAD = ActionType(
    u'acmestate:jws:http:head',
    fields(),
    fields(),
    u'A JWSClient HEAD request')

LOG_JWS_GET = ActionType(
    u'acmestate:jws:http:get',
    fields(),
    fields(),
    u'A JWSClient GET request')

LOG_JWS_POST = ActionType(
    u'acmestate:jws:http:post',
    fields(url=str),
    fields(),
    u'A JWSClient POST request')

LOG_JWS_REQUEST = ActionType(
    u'acmestate:jws:http:request',
    fields(method=str, url=str),
    fields(Field.for_types(u'content_type',
                           [str, None],
                           u'Content-Type header field'),
           code=int),
    u'A JWSClient request')

LOG_JWS_CHECK_RESPONSE = ActionType(
    u'acmestate:jws:http:check-response',
    fields(Field.for_types(u'response_content_type',
                           [str, None],
                           u'Content-Type header field'),
           Field.for_types(u'expected_content_type',
                           [str, None],
                           u'Expected Content-Type header field'),
           code=int),
    fields(),
    u'Checking a JWSClient response')

LOG_JWS_GET_NONCE = ActionType(
    u'acmestate:jws:nonce:get',
    fields(),
    fields(NONCE),
    u'Consuming a nonce')

LOG_JWS_ADD_NONCE = ActionType(
    u'acmestate:jws:nonce:add',
    fields(Field.for_types(u'raw_nonce',
                           [str, None],
                           u'Nonce header field')),
    fields(),
    u'Adding a nonce')

LOG_JWS_BAD_NONCE_RETRY = MessageType(
    u'acmestate:jws:nonce:bad-nonce-retry',
    fields(url=str),
    u'The CA rejected a nonce; retrying once with a fresh one')

DIRECTORY = Field(u'directory', methodcaller('to_json'), u'An ACME directory')

URL = Field(u'url', methodcaller('asText'), u'A URL object')

LOG_ACME_CONSUME_DIRECTORY = ActionType(
    u'acmestate:acme:session:from-url',
    fields(URL, key_type=str, alg=str),
    fields(DIRECTORY),
    u'Creating an ACME session from a remote directory')

LOG_ACME_REGISTER = ActionType(
    u'acmestate:acme:account:create',
    fields(Field(u'registration',
                 methodcaller('to_json'),
                 u'An ACME registration')),
    fields(LOCATION, STATUS, created=bool),
    u'Registering with an ACME server')

LOG_ACME_UPDATE_REGISTRATION = ActionType(
    u'acmestate:acme:account:update',
    fields(Field(u'registration',
                 methodcaller('to_json'),
                 u'An ACME registration'),
           LOCATION),
    fields(STATUS),
    u'Updating a registration')

LOG_ACME_KEY_CHANGE = ActionType(
    u'acmestate:acme:account:key-change',
    fields(LOCATION, old_key_type=str, new_key_type=str),
    fields(),
    u'Rolling an account over to a new key')

LOG_ACME_CREATE_ORDER = ActionType(
    u'acmestate:acme:order:create',
    fields(identifiers=list),
    fields(LOCATION, STATUS),
    u'Creating an order')

LOG_ACME_FINALIZE_ORDER = ActionType(
    u'acmestate:acme:order:finalize',
    fields(LOCATION, identifiers=list),
    fields(STATUS),
    u'Finalizing an order')

LOG_ACME_FETCH_CERTIFICATE = ActionType(
    u'acmestate:acme:certificate:fetch',
    fields(url=str),
    fields(certificates=int, alternates=int),
    u'Downloading a certificate chain')

LOG_ACME_REVOKE_CERTIFICATE = ActionType(
    u'acmestate:acme:certificate:revoke',
    fields(reason=int, serial=str),
    fields(),
    u'Revoking a certificate')

LOG_ACME_CREATE_AUTHORIZATION = ActionType(
    u'acmestate:acme:authorization:create',
    fields(Field(u'identifier',
                 methodcaller('to_json'),
                 u'An identifier')),
    fields(LOCATION, STATUS),
    u'Creating an authorization')

LOG_ACME_DEACTIVATE = ActionType(
    u'acmestate:acme:resource:deactivate',
    fields(LOCATION, kind=str),
    fields(STATUS),
    u'Deactivating an account or authorization')

LOG_ACME_ANSWER_CHALLENGE = ActionType(
    u'acmestate:acme:challenge:trigger',
    fields(LOCATION,
           Field.for_types(u'typ', [str, None], u'Challenge type')),
    fields(STATUS),
    u'Telling the CA a challenge is ready for validation')

LOG_ACME_BIND_RESOURCE = ActionType(
    u'acmestate:acme:resource:bind',
    fields(LOCATION, kind=str),
    fields(STATUS),
    u'Binding a resource from its location')

LOG_ACME_UPDATE_RESOURCE = ActionType(
    u'acmestate:acme:resource:update',
    fields(LOCATION, STATUS, kind=str),
    fields(STATUS, RETRY_AFTER),
    u'Refreshing a resource from the CA')
