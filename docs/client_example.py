"""
An example going through the whole issuance flow with a ``dns-01``
challenge: the TXT records to create are printed, and issuance goes on once
they were created.

Each time it starts, it will generate a new private key and register a new
account if one is not defined.

To try it against a local pebble server (https://github.com/letsencrypt/pebble)
run pebble with ``PEBBLE_VA_ALWAYS_VALID=1`` and use
``https://localhost:14000/dir`` as the directory.
"""
from __future__ import print_function

import sys

import requests
from acme import messages
from cryptography.hazmat.primitives import serialization
from eliot import to_file
from josepy.jwa import RS256
from josepy.jwk import JWKRSA
from twisted.python.url import URL

from acmestate.account import Account
from acmestate.order import Order
from acmestate.polling import poll_until_terminal
from acmestate.session import Session
from acmestate.util import csr_for_names, generate_private_key

# Copy inside an existing private key and check that account is reused.
# Or leave it empty to have the key automatically generated.
ACCOUNT_KEY_PEM = """
""".strip()

LOG_PATH = 'eliot-log.json'


def _get_key():
    """
    Return the private key to be used for ACME interaction.
    """
    if ACCOUNT_KEY_PEM:
        return serialization.load_pem_private_key(
            ACCOUNT_KEY_PEM.encode('ascii'), password=None)
    # We don't have a key...so generate one.
    key = generate_private_key(u'rsa')
    account_key = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
        )
    print('New account key generated:\n%s' % (account_key.decode('ascii'),))
    return key


def issue(directory, names, verify=True):
    http = requests.Session()
    http.verify = verify
    session = Session.from_url(
        URL.fromText(directory), JWKRSA(key=_get_key()), alg=RS256,
        http=http)

    # Register a new account, or find the existing one of the key.
    account = Account.create(
        session, contacts=[u'mailto:acmestate-test@example.org'],
        terms_agreed=True)
    print('Account URL: %s (new: %s)' % (account.location, account.created))

    order = Order.create(session, names)
    print('Order URL: %s' % (order.location,))
    challenges = []
    for authorization in order.authorizations():
        challenge = authorization.challenge(u'dns-01')
        if challenge is None:
            raise SystemExit(
                'No dns-01 challenge for %s' % (authorization.domain,))
        print('_acme-challenge.%s. TXT "%s"' % (
            authorization.identifier.value, challenge.validation()))
        challenges.append((authorization, challenge))

    input('Press enter once the TXT records exist.')
    for authorization, challenge in challenges:
        if (authorization.status == messages.STATUS_PENDING and
                authorization.in_flight is None):
            challenge.trigger()
        poll_until_terminal(authorization)
        print('%s: %s' % (authorization.domain, authorization.status))

    order.update()
    key = generate_private_key(u'ec')
    order.finalize(csr_for_names(names, key))
    poll_until_terminal(order)
    chain = order.fetch_certificate()
    print(chain.pem.decode('ascii'))
    print(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
        ).decode('ascii'))
    session.close()


if __name__ == '__main__':
    if len(sys.argv) < 3:
        print('Usage: %s API_ENDPOINT DOMAIN...\n' % (sys.argv[0],))
        print('ACME v2 endpoints:')
        print('[Production] https://acme-v02.api.letsencrypt.org/directory')
        print(
            '[Staging] https://acme-staging-v02.api.letsencrypt.org/directory')
        sys.exit(1)

    to_file(open(LOG_PATH, 'w'))
    issue(
        sys.argv[1], sys.argv[2:],
        verify=not sys.argv[1].startswith('https://localhost'))
