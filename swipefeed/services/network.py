"""Connectivity tracking. Reflects the host's reachability signal, no polling."""

from collections.abc import Callable

import structlog

from swipefeed.core.errors import FetchError, FetchErrorKind

logger = structlog.get_logger()

NETWORK_EVENTS = ("online", "offline")


class NetworkMonitor:
    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: dict[str, list[Callable[[], None]]] = {e: [] for e in NETWORK_EVENTS}

    @property
    def online(self) -> bool:
        return self._online

    def on(self, event: str, callback: Callable[[], None]) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown network event: {event}")
        self._listeners[event].append(callback)

    def off(self, event: str, callback: Callable[[], None]) -> None:
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def set_online(self, online: bool) -> bool:
        """Apply a reachability signal. Returns True when it caused a transition."""
        if online == self._online:
            return False
        self._online = online
        event = "online" if online else "offline"
        logger.info("network_transition", state=event)
        for callback in list(self._listeners[event]):
            try:
                callback()
            except Exception as e:
                logger.error("network_listener_error", state=event, error=str(e))
        return True

    def ensure_online(self) -> None:
        if not self._online:
            raise FetchError(FetchErrorKind.OFFLINE, "No network connection")
