"""
Per-provision cache of remote object snapshots.

A single lock serializes every read and refresh, so concurrent callers never
see a half populated entry and at most one refresh runs at a time.
"""

import logging
import threading
from typing import Callable, Dict, List

from .errors import LoopError, RemoteError, StoreError
from .interfaces import ResourceFactory
from .models import ProvisionObjects, RemoteObject, ResourceKind, kind_key

logger = logging.getLogger(__name__)


class ObjectCache:
    """Snapshots of the objects tracked by one provision, by object class.

    Args:
        refresh: Reloads the provision document and returns its objects
        factory: Builds the handles used to read each object
    """

    def __init__(
        self,
        refresh: Callable[[], ProvisionObjects],
        factory: ResourceFactory,
    ):
        self._refresh = refresh
        self._factory = factory
        self._lock = threading.Lock()
        self._entries: Dict[str, List[RemoteObject]] = {}

    def get_objects(self, kind: ResourceKind | str, force_refresh: bool = False) -> List[RemoteObject]:
        """Snapshots for an object class.

        An empty or missing entry, or force_refresh, reloads the document and
        then reads one snapshot per tracked reference.

        Raises:
            LoopError: If the document or any object cannot be read
        """
        key = kind_key(kind)

        with self._lock:
            cached = self._entries.get(key)
            if cached and not force_refresh:
                return list(cached)

            try:
                objects = self._refresh()
            except (RemoteError, StoreError) as e:
                raise LoopError(str(e)) from e

            self._entries[key] = []

            refs = objects.objects(key)
            if not refs:
                return []

            handle = self._factory.object(ResourceKind(key))
            snapshots = []

            for ref in refs:
                try:
                    snapshots.append(handle.info(ref.id))
                except RemoteError as e:
                    raise LoopError(str(e)) from e

            self._entries[key] = snapshots
            logger.debug(f"Cached {len(snapshots)} {key}")
            return list(snapshots)

    def invalidate(self, kind: ResourceKind | str | None = None) -> None:
        """Drop one class, or everything when kind is None."""
        with self._lock:
            if kind is None:
                self._entries.clear()
            else:
                self._entries.pop(kind_key(kind), None)
