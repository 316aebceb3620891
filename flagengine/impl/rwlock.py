import threading
from contextlib import contextmanager


class ReadWriteLock:
    """A lock that admits any number of concurrent readers or a single writer.

    Flag evaluations hold the read side, so they never wait on each other; swapping the catalog
    or clearing the result cache takes the write side and waits for in-flight readers to drain.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0

    def rlock(self):
        """Acquire a read lock. Blocks only while a writer holds the lock."""
        with self._cond:
            self._readers += 1

    def runlock(self):
        """Release a read lock."""
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def lock(self):
        """Acquire the write lock, waiting until no reader holds the lock."""
        self._cond.acquire()
        while self._readers > 0:
            self._cond.wait()

    def unlock(self):
        """Release the write lock."""
        self._cond.release()

    @property
    def readers(self) -> int:
        return self._readers

    @contextmanager
    def read(self):
        self.rlock()
        try:
            yield self
        finally:
            self.runlock()

    @contextmanager
    def write(self):
        self.lock()
        try:
            yield self
        finally:
            self.unlock()
