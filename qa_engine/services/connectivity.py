"""
Connectivity Signal

The host application reports online/offline transitions here; engine
components subscribe to be told about them. The engine never probes the
network itself.
"""

from typing import Callable

import structlog


logger = structlog.get_logger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Holds the current online flag and notifies subscribers on change."""

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[ConnectivityListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Record a connectivity report. Repeated reports of the same state are ignored."""
        if online == self._online:
            return
        self._online = online
        logger.info("connectivity_changed", online=online)

        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                logger.error("connectivity_listener_failed", error=str(e))
