"""
Multicast lock handling for SSDP/mDNS discovery.

:copyright: (c) 2025 by Meir Miyara.
:license: MPL-2.0, see LICENSE for more details.
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import Callable, Optional

_LOG = logging.getLogger(__name__)


class MulticastLock:
    """
    Non reference counted multicast lock.

    Some platforms only deliver multicast traffic to the process while such a
    lock is held. ``acquire`` on a held lock and ``release`` on a free lock are
    both no-ops, so a single ``release`` always frees it. Platform hooks are
    optional; without them the lock only tracks ownership.
    """

    def __init__(
        self,
        tag: str,
        on_acquire: Optional[Callable[[], None]] = None,
        on_release: Optional[Callable[[], None]] = None,
    ):
        self._tag = tag
        self._on_acquire = on_acquire
        self._on_release = on_release
        self._held = False
        self._guard = threading.Lock()

    @property
    def tag(self) -> str:
        return self._tag

    @property
    def is_held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        with self._guard:
            if self._held:
                return
            if self._on_acquire:
                self._on_acquire()
            self._held = True
        _LOG.debug(f"Multicast lock '{self._tag}' acquired")

    def release(self) -> None:
        with self._guard:
            if not self._held:
                return
            self._held = False
            if self._on_release:
                self._on_release()
        _LOG.debug(f"Multicast lock '{self._tag}' released")


@asynccontextmanager
async def hold_multicast_lock(lock: Optional[MulticastLock]):
    """Hold ``lock`` for the duration of the block, releasing it on every exit path."""
    if lock is not None:
        try:
            lock.acquire()
        except Exception as e:
            _LOG.warning(f"Could not acquire multicast lock: {e}")
    try:
        yield lock
    finally:
        if lock is not None and lock.is_held:
            lock.release()
