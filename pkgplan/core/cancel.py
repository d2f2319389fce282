"""Cooperative cancellation token shared by planning queries, fetch and apply."""

import threading


class CancelToken:
    """A flag polled at loop heads; once set, no new work is started."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def is_cancelled(cancel) -> bool:
    """Return True if an optional token has been triggered."""
    return cancel is not None and cancel.cancelled
