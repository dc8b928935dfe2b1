"""
Network link and status light abstractions.

The supervisor only needs begin() and is_up() from the radio, and set()
from a light. Real hardware plugs in here; the host implementations below
let the client run on a laptop.
"""

import logging
import socket
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class NetworkLink:
    """Network association interface (e.g. a Wi-Fi radio)."""

    def begin(self) -> None:
        """Start (or restart) association. Must not block."""
        raise NotImplementedError

    def is_up(self) -> bool:
        """Non-blocking association status."""
        raise NotImplementedError


class HostNetworkLink(NetworkLink):
    """
    Host OS network, probed by routing towards the hub.

    Connecting a UDP socket sends nothing but fails when there is no route,
    which is a cheap "is the network attached" check. The answer is cached
    for check_interval seconds so it can be called every loop iteration.
    """

    def __init__(
        self,
        host: str,
        port: int,
        check_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.host = host
        self.port = port
        self.check_interval = check_interval
        self._clock = clock
        self._last_check: Optional[float] = None
        self._up = False

    def begin(self) -> None:
        # The OS owns association; just force a fresh check
        self._last_check = None

    def is_up(self) -> bool:
        now = self._clock()
        if self._last_check is not None and now - self._last_check < self.check_interval:
            return self._up

        self._last_check = now
        was_up = self._up
        self._up = self._probe()
        if self._up != was_up:
            logger.debug(f"Route to {self.host}:{self.port} {'available' if self._up else 'unavailable'}")
        return self._up

    def _probe(self) -> bool:
        try:
            infos = socket.getaddrinfo(self.host, self.port, type=socket.SOCK_DGRAM)
        except OSError:
            return False
        for family, socktype, proto, _, addr in infos:
            try:
                with socket.socket(family, socktype, proto) as s:
                    s.connect(addr)
                return True
            except OSError:
                continue
        return False


class StatusLight:
    """On/off indicator interface (e.g. an LED pin)."""

    def set(self, on: bool) -> None:
        raise NotImplementedError


class LogStatusLight(StatusLight):
    """Indicator that logs its transitions."""

    def __init__(self, name: str):
        self.name = name
        self.on: Optional[bool] = None

    def set(self, on: bool) -> None:
        if on != self.on:
            self.on = on
            logger.info(f"{self.name} light {'ON' if on else 'OFF'}")
