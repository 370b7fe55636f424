"""Connectivity probes consumed by the session manager."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol

import requests

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityProbe(Protocol):
    """Boolean online flag plus change notifications."""

    def is_online(self) -> bool:
        ...

    def subscribe(self, listener: ConnectivityListener) -> None:
        ...


class ManualConnectivity:
    """Probe whose state is pushed by the host."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: List[ConnectivityListener] = []

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> None:
        self._listeners.append(listener)

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        for listener in list(self._listeners):
            listener(online)


class HttpConnectivityProbe(ManualConnectivity):
    """Probe that polls a health endpoint; the host decides when to ``poll``."""

    def __init__(self, health_url: str, timeout_seconds: float = 3.0, online: bool = True) -> None:
        super().__init__(online=online)
        self.health_url = health_url
        self.timeout_seconds = timeout_seconds

    def check(self) -> bool:
        try:
            response = requests.get(self.health_url, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            logger.debug("Health check failed: %s", exc)
            return False
        return response.status_code < 500

    def poll(self) -> bool:
        online = self.check()
        self.set_online(online)
        return online


def build_probe(health_url: Optional[str], timeout_seconds: float = 3.0, online: bool = True) -> ManualConnectivity:
    """HTTP probe when a health URL is configured, manual probe otherwise."""
    if health_url:
        return HttpConnectivityProbe(health_url, timeout_seconds=timeout_seconds, online=online)
    return ManualConnectivity(online=online)
