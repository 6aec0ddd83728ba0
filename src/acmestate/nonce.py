"""
Anti-replay nonce bookkeeping.
"""
from collections import deque
from threading import Lock

#: How many spent nonces are remembered to refuse a replayed one.
SPENT_HISTORY = 1024


class NonceCache(object):
    """
    A pool of single-use anti-replay nonces shared by everything signing
    requests for one session.

    Nonces are handed out in the order the CA issued them, and a nonce is
    never handed out twice: taking one removes it from the pool under a lock,
    and a nonce fetched because the pool was empty goes straight to the
    request that needed it.
    """
    def __init__(self):
        self._lock = Lock()
        self._nonces = deque()
        self._spent = deque(maxlen=SPENT_HISTORY)

    def __len__(self):
        with self._lock:
            return len(self._nonces)

    def add(self, nonce):
        """
        Store a nonce received in a response.

        :param bytes nonce: The decoded nonce.

        :return: ``False`` if the nonce was already known, in which case it is
            not stored.
        """
        with self._lock:
            if nonce in self._spent or nonce in self._nonces:
                return False
            self._nonces.append(nonce)
            return True

    def take(self, fetch):
        """
        Take a nonce for a request about to be signed.

        :param fetch: A no-argument callable returning a fresh decoded nonce;
            called, without holding the lock, when the pool is empty.

        :rtype: bytes
        """
        with self._lock:
            if self._nonces:
                nonce = self._nonces.popleft()
                self._spent.append(nonce)
                return nonce
        nonce = fetch()
        with self._lock:
            self._spent.append(nonce)
        return nonce

    def clear(self):
        """
        Forget all pooled nonces.  If the CA rejected one, the others are
        probably stale too.
        """
        with self._lock:
            self._spent.extend(self._nonces)
            self._nonces.clear()


__all__ = ['NonceCache', 'SPENT_HISTORY']
