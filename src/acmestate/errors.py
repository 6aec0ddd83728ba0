"""
Exception types for acmestate.

Everything that goes wrong while talking to the CA is raised to the caller;
the only automatic retry anywhere is the single ``badNonce`` retry done by
`acmestate.client.JWSClient.post`.
"""
import attr


def _problem_code(typ):
    # RFC 8555 uses urn:ietf:params:acme:error:<code>, older drafts (and some
    # servers) use urn:acme:error:<code>; only the code matters here.
    if not typ:
        return None
    return typ.split(u':')[-1]


@attr.s(auto_exc=True)
class TransportError(Exception):
    """
    The request failed without an interpretable response: a network or TLS
    failure, or a response that is neither a success nor a problem document.
    """
    reason = attr.ib()
    url = attr.ib(default=None)
    status_code = attr.ib(default=None)

    def __str__(self):
        return repr(self)


@attr.s(auto_exc=True)
class ProtocolError(Exception):
    """
    The CA answered with a well-formed problem document.

    :ivar ~acme.messages.Error problem: The decoded problem document.
    :ivar int status_code: The HTTP status of the response.
    :ivar retry_after: The parsed ``Retry-After`` hint of the response, or
        ``None``.
    :vartype retry_after: `~datetime.datetime`
    """
    problem = attr.ib()
    status_code = attr.ib(default=None)
    retry_after = attr.ib(default=None)
    url = attr.ib(default=None)

    @property
    def typ(self):
        return self.problem.typ

    @property
    def code(self):
        """
        The short error code, e.g. ``u'rateLimited'``.
        """
        return _problem_code(self.problem.typ)

    @property
    def detail(self):
        return self.problem.detail

    @property
    def subproblems(self):
        return self.problem.subproblems or ()

    def __str__(self):
        return u'{} ({}): {}'.format(
            self.typ, self.status_code, self.detail)


class RateLimitedError(ProtocolError):
    """
    The CA refused the request because a rate limit was hit.  Honour
    ``retry_after`` before trying again.
    """


class BadNonceError(ProtocolError):
    """
    The CA rejected the anti-replay nonce, and the single automatic retry
    was rejected as well.
    """


_PROBLEM_TYPES = {
    u'rateLimited': RateLimitedError,
    u'badNonce': BadNonceError,
    }


def protocol_error(problem, status_code=None, retry_after=None, url=None):
    """
    Build the most specific `ProtocolError` for a problem document.

    :param ~acme.messages.Error problem: The problem document.
    """
    error_type = _PROBLEM_TYPES.get(_problem_code(problem.typ), ProtocolError)
    return error_type(
        problem=problem, status_code=status_code, retry_after=retry_after,
        url=url)


@attr.s(auto_exc=True)
class ValidationMismatchError(ValueError):
    """
    A local precondition failed; no request was sent.
    """
    message = attr.ib()
    expected = attr.ib(default=None)
    actual = attr.ib(default=None)

    def __str__(self):
        return repr(self)


@attr.s(auto_exc=True)
class StateError(Exception):
    """
    The operation is not valid for the resource's current status.
    """
    operation = attr.ib()
    location = attr.ib()
    status = attr.ib()

    def __str__(self):
        return repr(self)


@attr.s(auto_exc=True)
class UnexpectedTransition(StateError):
    """
    The CA reported a status the resource cannot move to from its current
    one.  The in-memory resource keeps its previous state.
    """
    fetched = attr.ib(default=None)


@attr.s(auto_exc=True)
class UnexpectedUpdate(ValueError):
    """
    The CA answered with a different resource than the one asked for.
    """
    message = attr.ib()
    location = attr.ib(default=None)

    def __str__(self):
        return repr(self)


@attr.s(auto_exc=True)
class MissingEndpoint(LookupError):
    """
    The CA directory does not publish the requested operation.
    """
    name = attr.ib()

    def __str__(self):
        return repr(self)


@attr.s(auto_exc=True)
class PollTimeout(Exception):
    """
    The resource did not reach a terminal status within the polling ceiling.
    """
    resource = attr.ib()
    attempts = attr.ib()
    elapsed = attr.ib()

    def __str__(self):
        return 'PollTimeout({!r}, attempts={}, elapsed={:.1f})'.format(
            self.resource.location, self.attempts, self.elapsed)


__all__ = [
    'TransportError', 'ProtocolError', 'RateLimitedError', 'BadNonceError',
    'protocol_error', 'ValidationMismatchError', 'StateError',
    'UnexpectedTransition', 'UnexpectedUpdate', 'MissingEndpoint',
    'PollTimeout']
