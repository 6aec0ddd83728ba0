"""
Poll results and the caller-owned polling loop.

Nothing in acmestate waits on its own.  A single poll step (``poll()`` on a
resource) applies whatever the CA returned to the resource first, and only
then reports either a plain `PollStatus` or a `RetrySignal` carrying the
CA's ``Retry-After`` hint.  Waiting between steps is up to the caller;
`poll_until_terminal` is one such loop, bounded by attempts and time.
"""
import time
from datetime import datetime, timezone

import attr

from acmestate.errors import PollTimeout
from acmestate.util import clock_now


@attr.s(frozen=True)
class PollStatus(object):
    """
    A poll step without a retry hint.
    """
    status = attr.ib()
    terminal = attr.ib()


@attr.s(frozen=True)
class RetrySignal(object):
    """
    A poll step whose response carried a ``Retry-After`` hint.  The resource
    state was already updated when this is returned; this is not a failure.

    :ivar ~datetime.datetime retry_after: When to poll again.
    """
    status = attr.ib()
    terminal = attr.ib()
    retry_after = attr.ib()

    def delay(self, now=None):
        """
        Seconds to wait from ``now`` (default: the current time) until
        ``retry_after``; never negative.

        :rtype: float
        """
        if now is None:
            now = datetime.now(timezone.utc)
        return max(0.0, (self.retry_after - now).total_seconds())


def poll_result(resource):
    """
    Report the outcome of a finished update of ``resource``.

    :rtype: `PollStatus` or `RetrySignal`
    """
    if resource.retry_after is None:
        return PollStatus(status=resource.status, terminal=resource.terminal)
    return RetrySignal(
        status=resource.status,
        terminal=resource.terminal,
        retry_after=resource.retry_after)


class _SystemClock(object):
    """
    The wall clock, with the ``seconds()`` method of ``IReactorTime``.
    """
    seconds = staticmethod(time.time)


def poll_until_terminal(resource, timeout=300.0, max_attempts=None,
                        interval=1.0, max_interval=60.0, clock=None,
                        sleep=None, observe=None):
    """
    Poll ``resource`` until its status is terminal.

    Between steps, sleeps for the CA's ``Retry-After`` hint when there is
    one, otherwise for ``interval`` seconds, doubling after every step
    without a hint.  No single wait is longer than ``max_interval``.

    The waiting is done by ``sleep``, so a caller on a cooperative runtime
    can hand in something that suspends instead of blocking, and can cancel
    the loop by raising from it.

    :param resource: An `~acmestate.interfaces.IResource` provider.
    :param float timeout: Give up once this many seconds have passed, or
        ``None`` for no time ceiling.
    :param int max_attempts: Give up after this many polls, or ``None``.
    :param clock: The ``IReactorTime`` provider to measure time with; the
        wall clock by default.
    :param sleep: A callable taking a number of seconds; `time.sleep` by
        default.
    :param observe: Called with every `PollStatus` / `RetrySignal`.

    :raises PollTimeout: If a ceiling was hit first.

    :return: The resource, in a terminal status.
    """
    if timeout is None and max_attempts is None:
        raise ValueError('A timeout or max_attempts ceiling is required.')
    if clock is None:
        clock = _SystemClock()
    if sleep is None:
        sleep = time.sleep
    start = clock.seconds()
    attempts = 0
    backoff = interval
    while True:
        result = resource.poll()
        attempts += 1
        if observe is not None:
            observe(result)
        if result.terminal:
            return resource

        elapsed = clock.seconds() - start
        if max_attempts is not None and attempts >= max_attempts:
            raise PollTimeout(resource, attempts, elapsed)

        if isinstance(result, RetrySignal):
            wait = result.delay(clock_now(clock))
        else:
            wait = backoff
            backoff += backoff
        wait = min(wait, max_interval)

        if timeout is not None and elapsed + wait > timeout:
            raise PollTimeout(resource, attempts, elapsed)
        sleep(wait)


__all__ = ['PollStatus', 'RetrySignal', 'poll_result', 'poll_until_terminal']
