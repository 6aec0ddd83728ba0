"""
The shared context every ACME resource binds against.
"""
import attr
from josepy.jwa import RS256

from acmestate.client import _DEFAULT_TIMEOUT, JWSClient
from acmestate.errors import MissingEndpoint, ValidationMismatchError
from acmestate.logging import LOG_ACME_CONSUME_DIRECTORY
from acmestate.nonce import NonceCache
from acmestate.util import check_directory_url_type


@attr.s(eq=False)
class Session(object):
    """
    One CA interaction context: the CA directory, the nonce pool, the
    transport, and the key requests are signed with.

    Everything that talks to the CA gets a session passed in explicitly;
    there is no ambient signing context.

    Should be initialized with `Session.from_url`.

    :ivar str directory_url: Where the directory was fetched from.
    :ivar ~acme.messages.Directory directory: The CA directory.
    :ivar ~acmestate.client.JWSClient transport: The signed transport.
    :ivar ~acmestate.nonce.NonceCache nonces: The nonce pool the transport
        consumes and replenishes.
    :ivar ~josepy.jwk.JWK key: The account key.
    :ivar alg: The signing algorithm; must suit ``key``.
    :ivar str account_location: The account URL, used as the JWS ``kid``
        once an account was created or bound.
    """
    directory_url = attr.ib()
    directory = attr.ib(repr=False)
    transport = attr.ib(repr=False)
    key = attr.ib(repr=False)
    alg = attr.ib(default=RS256)
    account_location = attr.ib(default=None)

    @classmethod
    def from_url(cls, url, key, alg=RS256, http=None,
                 timeout=_DEFAULT_TIMEOUT, user_agent=None):
        """
        Construct a session from an ACME directory at a given URL.

        :param url: The ``twisted.python.url.URL`` to fetch the directory
            from.  See `acmestate.urls` for constants for various well-known
            public directories.
        :param ~josepy.jwk.JWK key: The account key to use.
        :param alg: The signing algorithm to use.  Needs to be compatible
            with the type of key used.
        :param requests.Session http: The HTTP session to use, or ``None``
            to construct one.
        :param int timeout: Number of seconds to wait for an HTTP response
            during ACME server interaction.

        :rtype: `Session`
        """
        with LOG_ACME_CONSUME_DIRECTORY(
                url=url, key_type=key.typ, alg=alg.name) as action:
            check_directory_url_type(url)
            transport = JWSClient(
                http=http, nonces=NonceCache(), user_agent=user_agent,
                timeout=timeout)
            directory = transport.start(url.asText())
            action.add_success_fields(directory=directory)
            return cls(
                directory_url=url.asText(),
                directory=directory,
                transport=transport,
                key=key,
                alg=alg)

    @property
    def nonces(self):
        return self.transport.nonces

    @property
    def meta(self):
        """
        The CA metadata from the directory.

        :rtype: `~acme.messages.Directory.Meta`
        """
        return self.directory.meta

    def endpoint(self, name):
        """
        Resolve a directory operation, e.g. ``u'newOrder'``, to its URL.

        :raises MissingEndpoint: If the CA does not publish it.
        """
        try:
            return self.directory[name]
        except KeyError:
            raise MissingEndpoint(name)

    def post(self, url, obj, embed_key=False, kid=None, **kwargs):
        """
        Send a signed request.

        :param str url: Where to send it.
        :param obj: The payload, or ``None`` for a POST-as-GET.
        :param bool embed_key: Sign with the public key embedded in the
            header instead of the account ``kid``; only for account creation
            and lookup.
        :param str kid: Sign for this account URL instead of the bound one.

        :raises ValidationMismatchError: If no account is bound and neither
            the key is embedded nor a ``kid`` given.

        :rtype: `~acmestate.client.Response`
        """
        if embed_key:
            kid = None
        elif kid is None:
            if self.account_location is None:
                raise ValidationMismatchError(
                    u'No account is bound to this session.', actual=url)
            kid = self.account_location
        return self.transport.post(
            url, obj, key=self.key, alg=self.alg, kid=kid, **kwargs)

    def fetch(self, url, **kwargs):
        """
        POST-as-GET a URL.

        :rtype: `~acmestate.client.Response`
        """
        return self.post(url, None, **kwargs)

    def close(self):
        self.transport.close()


__all__ = ['Session']
