import time
from threading import Event, Thread
from typing import Callable

from flagengine.impl.util import log


class RepeatingTask:
    """
    Runs an action on a daemon worker thread, once per interval, until stopped. The engine uses it
    for the optional result cache sweep and the file catalog watcher uses it to poll for changes.
    """

    def __init__(self, label: str, interval: float, initial_delay: float, action: Callable[[], None]):
        """
        Creates the task without starting the worker thread.

        :param label: prefix for the worker thread name
        :param interval: time in seconds between the starts of two runs of the action
        :param initial_delay: time in seconds to wait before the first run
        :param action: the function to run; exceptions it raises are logged and do not end the task
        """
        self.__interval = interval
        self.__initial_delay = initial_delay
        self.__action = action
        self.__stop_requested = Event()
        self.__worker = Thread(target=self._loop, name="%s.repeating" % label, daemon=True)

    def start(self):
        self.__worker.start()

    def stop(self):
        """
        Asks the worker thread to exit once the current run of the action returns. A stopped task
        cannot be started again.
        """
        self.__stop_requested.set()

    @property
    def stopped(self) -> bool:
        return self.__stop_requested.is_set()

    def _loop(self):
        wait_for = self.__initial_delay
        while wait_for <= 0 or not self.__stop_requested.wait(wait_for):
            if self.__stop_requested.is_set():
                return
            started = time.monotonic()
            try:
                self.__action()
            except Exception as e:
                log.exception("Unexpected exception on %s: %s" % (self.__worker.name, e))
            wait_for = self.__interval - (time.monotonic() - started)
