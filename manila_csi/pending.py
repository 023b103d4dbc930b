"""Tracking of in-flight requests per resource name."""

import contextlib
import threading

from oslo_log import log as logging

from . import exceptions

LOG = logging.getLogger(__name__)


class PendingSet:
    """Set of resource names with a request in flight.

    ``acquire`` is an atomic insert-if-absent, so at most one request per
    name can be past the guard at any time.
    """

    def __init__(self, resource: str):
        self.resource = resource
        self._names = set()
        self._lock = threading.Lock()

    def acquire(self, name: str) -> bool:
        """Record ``name`` as in flight. Returns False if it already was."""
        with self._lock:
            if name in self._names:
                return False
            self._names.add(name)
            return True

    def release(self, name: str) -> None:
        with self._lock:
            self._names.discard(name)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._names

    @contextlib.contextmanager
    def guard(self, name: str):
        """Hold ``name`` for the duration of the block.

        Raises:
            Aborted: A request for ``name`` is already in flight
        """
        if not self.acquire(name):
            LOG.info("%s %s is already being processed", self.resource, name)
            raise exceptions.Aborted(resource=self.resource, name=name)
        try:
            yield
        finally:
            self.release(name)
