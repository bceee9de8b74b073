"""
Fire TV client built on the optional Amazon Fling SDK.

The SDK is looked up at runtime. When it cannot be imported the client binds
a no-op implementation, so the rest of the integration works without it.

Media calls (play/pause/stop) are best effort: vendor failures are logged and
absorbed, and the exposed playback state is a local optimistic mirror that is
never confirmed by the device.

:copyright: (c) 2025 by Meir Miyara.
:license: MPL-2.0, see LICENSE for more details.
"""

import asyncio
import importlib
import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from uc_intg_uniremote.multicast import MulticastLock

_LOG = logging.getLogger(__name__)

FLING_CONTROLLER_MODULE = "whisperplay.fling.media.controller"
FLING_PROVIDER_MODULE = "whisperplay.fling.provider"
INSTALL_DISCOVERY_MODULE = "whisperplay.install"
MEDIA_ROUTER_MODULE = "mediarouter"

DEFAULT_SERVICE_ID = "amzn.thin.pl"
# Tried in this order when start(sid, listener) fails with the preferred id.
FALLBACK_SERVICE_IDS = ("com.amazon.whisperplay.fling.media", "com.amazon.whisperplay", "*", "")

DEFAULT_RECEIVER_NAME = "Fire TV"
MEDIA_TITLE = "UniRemote"
MULTICAST_LOCK_TAG = "UniRemote-Fling"


class PlaybackState(Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass(frozen=True)
class Receiver:
    """A Fire TV discovered on the LAN."""

    id: str
    friendly_name: str = DEFAULT_RECEIVER_NAME
    address: str = ""


ReceiverCallback = Callable[[Receiver], None]
PlaybackListener = Callable[[PlaybackState], None]


def _invoke_named(obj: Any, *candidates: str) -> Any:
    """Call the first zero-argument method of ``obj`` whose name matches a candidate, ignoring case."""
    if obj is None:
        return None
    methods = {name.lower(): name for name in dir(obj) if not name.startswith("_")}
    for candidate in candidates:
        name = methods.get(candidate.lower())
        if name is None:
            continue
        attr = getattr(obj, name, None)
        if callable(attr):
            return attr()
    return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


def receiver_from_player(player: Any) -> Optional[Receiver]:
    try:
        player_id = _as_text(_invoke_named(player, "getUniqueIdentifier"))
        if not player_id:
            return None
        name = _as_text(_invoke_named(player, "getName")) or DEFAULT_RECEIVER_NAME
        return Receiver(id=player_id, friendly_name=name)
    except Exception as e:
        _LOG.warning(f"Could not read Fling player: {e}")
        return None


def receiver_from_device(device: Any) -> Optional[Receiver]:
    """Build a receiver from an install-discovery device of unknown shape."""
    try:
        device_id = _as_text(_invoke_named(device, "getUniqueIdentifier", "getUniqueId", "getId"))
        if not device_id:
            return None
        name = _as_text(_invoke_named(device, "getName", "getFriendlyName")) or DEFAULT_RECEIVER_NAME
        address = _as_text(
            _invoke_named(device, "getIpAddress", "getIp", "getHostAddress", "getAddress", "getHost")
        ) or ""
        return Receiver(id=device_id, friendly_name=name, address=address)
    except Exception as e:
        _LOG.warning(f"Could not read install discovery device: {e}")
        return None


def receiver_from_route(route: Any) -> Optional[Receiver]:
    try:
        route_id = _as_text(_invoke_named(route, "getId"))
        if not route_id:
            return None
        name = _as_text(_invoke_named(route, "getName")) or DEFAULT_RECEIVER_NAME
        return Receiver(id=route_id, friendly_name=name)
    except Exception as e:
        _LOG.warning(f"Could not read media route: {e}")
        return None


class _VendorListener:
    """
    Listener handed to vendor discovery controllers.

    SDK revisions name their callbacks differently (``playerDiscovered``,
    ``onDeviceFound``, ``onRouteAdded``...), so any public attribute lookup
    resolves to a handler chosen by name markers. Handlers never raise back
    into the SDK.
    """

    def __init__(
        self,
        label: str,
        found_markers: Sequence[str],
        lost_markers: Sequence[str],
        on_found: Callable[..., None],
        on_lost: Callable[..., None],
    ):
        self._label = label
        self._found_markers = tuple(found_markers)
        self._lost_markers = tuple(lost_markers)
        self._on_found = on_found
        self._on_lost = on_lost

    def _handler_for(self, name: str) -> Optional[Callable[..., None]]:
        lowered = name.lower()
        if any(marker in lowered for marker in self._found_markers):
            return self._on_found
        if any(marker in lowered for marker in self._lost_markers):
            return self._on_lost
        return None

    def __getattr__(self, name: str) -> Callable[..., None]:
        if name.startswith("_"):
            raise AttributeError(name)
        handler = self._handler_for(name)

        def _callback(*args: Any) -> None:
            try:
                if handler is not None:
                    handler(*args)
                elif "failure" in name.lower():
                    _LOG.warning(f"{self._label} reported {name}{args!r}")
                else:
                    _LOG.debug(f"{self._label} callback: {name}")
            except Exception as e:
                _LOG.error(f"{self._label} listener error in {name}: {e}")

        return _callback


class _NoopBinding:
    """Binding used when the Fling SDK is absent. Callbacks are never invoked."""

    available = False

    def start_discovery(self, service_id: Optional[str], on_found: ReceiverCallback,
                        on_lost: ReceiverCallback) -> None:
        pass

    def stop_discovery(self) -> None:
        pass

    def connect(self, receiver: Receiver) -> None:
        pass

    def play(self, url: str) -> None:
        pass

    def pause(self) -> None:
        pass

    def stop(self) -> None:
        pass


class _FlingBinding(_NoopBinding):
    """Binding that drives the Fling SDK plus the optional MediaRouter and install discovery channels."""

    available = True

    def __init__(self, controller_module: Any, context: Any, multicast_lock: MulticastLock):
        self._controller_cls = getattr(controller_module, "DiscoveryController")
        self._context = context
        self._multicast_lock = multicast_lock
        self._guard = threading.RLock()

        self._controller: Any = None
        self._install_controller: Any = None
        self._router: Any = None
        self._route_callback: Any = None
        self._route_provider: Any = None

        self._players_by_id: Dict[str, Any] = {}
        self._current_player: Any = None
        self._connected_id: Optional[str] = None

    @staticmethod
    def default_service_id() -> str:
        try:
            provider_module = importlib.import_module(FLING_PROVIDER_MODULE)
            value = getattr(provider_module.FlingMediaRouteProvider, "DEFAULT_PLAYER_SERVICE_ID", None)
            if isinstance(value, str) and value:
                return value
        except Exception:
            pass
        return DEFAULT_SERVICE_ID

    def start_discovery(self, service_id: Optional[str], on_found: ReceiverCallback,
                        on_lost: ReceiverCallback) -> None:
        if self._controller is not None:
            _LOG.debug("Discovery already running, restarting")
            self.stop_discovery()

        try:
            self._multicast_lock.acquire()
        except Exception as e:
            _LOG.warning(f"Could not acquire multicast lock: {e}")

        try:
            self._controller = self._controller_cls(self._context)
            with self._guard:
                self._players_by_id.clear()
                self._current_player = None

            listener = _VendorListener(
                "Fling discovery",
                found_markers=("discovered",),
                lost_markers=("lost", "removed"),
                on_found=lambda *args: self._on_player_found(args, on_found),
                on_lost=lambda *args: self._on_player_lost(args, on_lost),
            )
            desired_sid = (service_id or "").strip() or self.default_service_id()
            if not self._start_controller(desired_sid, listener):
                _LOG.error("DiscoveryController.start could not be invoked with any signature")

            self._start_route_discovery(desired_sid, on_found, on_lost)
            self._start_install_discovery(on_found, on_lost)
        except Exception as e:
            _LOG.error(f"Fire TV discovery failed to start: {e}")

    def _start_controller(self, service_id: str, listener: _VendorListener) -> bool:
        start = getattr(self._controller, "start", None)
        if start is None:
            return False

        for sid in (service_id, *FALLBACK_SERVICE_IDS):
            try:
                _LOG.debug(f"Starting discovery via start({sid!r}, listener)")
                start(sid, listener)
                _LOG.info(f"Fling discovery started with SID={sid!r}")
                return True
            except Exception as e:
                _LOG.warning(f"start({sid!r}, listener) failed: {e}")

        # Older SDKs only take the listener.
        try:
            start(listener)
            _LOG.info("Fling discovery started via start(listener)")
            return True
        except Exception as e:
            _LOG.warning(f"start(listener) failed: {e}")
        return False

    def _start_route_discovery(self, service_id: str, on_found: ReceiverCallback,
                               on_lost: ReceiverCallback) -> None:
        try:
            router_module = importlib.import_module(MEDIA_ROUTER_MODULE)
        except ImportError:
            _LOG.debug("MediaRouter not available, route discovery skipped")
            return

        try:
            router = router_module.MediaRouter.getInstance(self._context)
            provider = self._new_route_provider(service_id)
            if provider is not None:
                router.addProvider(provider)

            builder = router_module.MediaRouteSelector.Builder()
            builder.addControlCategory(router_module.MediaControlIntent.CATEGORY_REMOTE_PLAYBACK)
            selector = builder.build()

            # Route callbacks receive (router, route).
            callback = _VendorListener(
                "MediaRouter",
                found_markers=("routeadded",),
                lost_markers=("routeremoved",),
                on_found=lambda *args: self._on_route_found(args, on_found),
                on_lost=lambda *args: self._on_route_lost(args, on_lost),
            )
            router.addCallback(selector, callback, router_module.MediaRouter.CALLBACK_FLAG_PERFORM_ACTIVE_SCAN)

            self._router = router
            self._route_callback = callback
            self._route_provider = provider
            _LOG.debug(f"MediaRouter discovery started with SID={service_id!r}")
        except Exception as e:
            _LOG.warning(f"MediaRouter fallback unavailable: {e}")

    def _new_route_provider(self, service_id: str) -> Any:
        try:
            provider_module = importlib.import_module(FLING_PROVIDER_MODULE)
            return provider_module.FlingMediaRouteProvider(self._context, service_id)
        except Exception as e:
            _LOG.debug(f"FlingMediaRouteProvider unavailable: {e}")
            return None

    def _start_install_discovery(self, on_found: ReceiverCallback, on_lost: ReceiverCallback) -> None:
        try:
            install_module = importlib.import_module(INSTALL_DISCOVERY_MODULE)
            controller_cls = install_module.InstallDiscoveryController
        except (ImportError, AttributeError):
            _LOG.debug("Install discovery not available")
            return

        try:
            controller = controller_cls(self._context)
            listener = _VendorListener(
                "Install discovery",
                found_markers=("discovered", "found"),
                lost_markers=("lost", "removed"),
                on_found=lambda *args: self._on_device_found(args, on_found),
                on_lost=lambda *args: self._on_device_lost(args, on_lost),
            )
            controller.start(listener)
            self._install_controller = controller
            _LOG.debug("Install discovery fallback started")
        except Exception as e:
            _LOG.warning(f"Install discovery not available: {e}")

    def _on_player_found(self, args: tuple, on_found: ReceiverCallback) -> None:
        player = args[0] if args else None
        receiver = receiver_from_player(player)
        if receiver is None:
            return
        with self._guard:
            self._players_by_id[receiver.id] = player
            if self._connected_id == receiver.id:
                self._current_player = player
        on_found(receiver)

    def _on_player_lost(self, args: tuple, on_lost: ReceiverCallback) -> None:
        receiver = receiver_from_player(args[0] if args else None)
        if receiver is None:
            return
        with self._guard:
            self._players_by_id.pop(receiver.id, None)
        on_lost(receiver)

    def _on_route_found(self, args: tuple, on_found: ReceiverCallback) -> None:
        receiver = receiver_from_route(args[1] if len(args) > 1 else None)
        if receiver is not None:
            on_found(receiver)

    def _on_route_lost(self, args: tuple, on_lost: ReceiverCallback) -> None:
        receiver = receiver_from_route(args[1] if len(args) > 1 else None)
        if receiver is not None:
            on_lost(receiver)

    def _on_device_found(self, args: tuple, on_found: ReceiverCallback) -> None:
        receiver = receiver_from_device(args[0] if args else None)
        if receiver is None:
            return
        with self._guard:
            known = receiver.id in self._players_by_id
        # No RemoteMediaPlayer here, but the device is still a candidate.
        if not known:
            on_found(receiver)

    def _on_device_lost(self, args: tuple, on_lost: ReceiverCallback) -> None:
        receiver = receiver_from_device(args[0] if args else None)
        if receiver is not None:
            on_lost(receiver)

    def stop_discovery(self) -> None:
        controller, self._controller = self._controller, None
        if controller is not None:
            try:
                controller.stop()
                _LOG.debug("DiscoveryController.stop invoked")
            except Exception as e:
                _LOG.error(f"Fire TV discovery stop failed: {e}")
        else:
            _LOG.debug("DiscoveryController.stop skipped (controller not initialized)")

        try:
            if self._router is not None and self._route_callback is not None:
                self._router.removeCallback(self._route_callback)
            if self._router is not None and self._route_provider is not None:
                self._router.removeProvider(self._route_provider)
        except Exception as e:
            _LOG.warning(f"MediaRouter teardown failed: {e}")
        finally:
            self._router = None
            self._route_callback = None
            self._route_provider = None

        install_controller, self._install_controller = self._install_controller, None
        if install_controller is not None:
            try:
                stop = getattr(install_controller, "stop", None)
                if callable(stop):
                    stop()
            except Exception as e:
                _LOG.warning(f"Install discovery stop failed: {e}")

        try:
            self._multicast_lock.release()
        except Exception as e:
            _LOG.warning(f"Multicast lock release failed: {e}")

    def connect(self, receiver: Receiver) -> None:
        with self._guard:
            self._current_player = self._players_by_id.get(receiver.id)
            self._connected_id = receiver.id
        if self._current_player is None:
            _LOG.info(f"Fire TV {receiver.id} selected but not discovered yet; media calls are skipped until it is")

    def _player(self, action: str) -> Any:
        with self._guard:
            player = self._current_player
        if player is None:
            _LOG.warning(f"{action} skipped: no Fire TV player connected")
        return player

    def play(self, url: str) -> None:
        player = self._player("play")
        if player is None:
            return
        try:
            if url:
                player.setMediaSource(url, MEDIA_TITLE, True, False)
            player.play()
        except Exception as e:
            _LOG.error(f"Fire TV play failed: {e}")

    def pause(self) -> None:
        player = self._player("pause")
        if player is None:
            return
        try:
            player.pause()
        except Exception as e:
            _LOG.error(f"Fire TV pause failed: {e}")

    def stop(self) -> None:
        player = self._player("stop")
        if player is None:
            return
        try:
            player.stop()
        except Exception as e:
            _LOG.error(f"Fire TV stop failed: {e}")


class FireTvClient:
    """
    Uniform Fire TV facade.

    The SDK probe runs once in the constructor; the chosen binding never
    changes afterwards. No public method raises.
    """

    def __init__(
        self,
        context: Any = None,
        multicast_lock: Optional[MulticastLock] = None,
        sdk_module: str = FLING_CONTROLLER_MODULE,
    ):
        self._playback = PlaybackState.IDLE
        self._playback_listeners: List[PlaybackListener] = []
        self._connected_id: Optional[str] = None
        self._binding = self._bind(sdk_module, context, multicast_lock or MulticastLock(MULTICAST_LOCK_TAG))

    @staticmethod
    def _bind(sdk_module: str, context: Any, multicast_lock: MulticastLock) -> _NoopBinding:
        try:
            module = importlib.import_module(sdk_module)
            binding = _FlingBinding(module, context, multicast_lock)
            _LOG.info("Fling SDK found, Fire TV control enabled")
            return binding
        except Exception as e:
            _LOG.warning(f"Fling SDK not found; using no-op implementation: {e}")
            return _NoopBinding()

    @property
    def is_available(self) -> bool:
        return self._binding.available

    @property
    def playback(self) -> PlaybackState:
        return self._playback

    @property
    def connected_id(self) -> Optional[str]:
        """Id of the receiver passed to the last ``connect`` call."""
        return self._connected_id

    def add_playback_listener(self, listener: PlaybackListener) -> Callable[[], None]:
        """Register a playback observer; returns a function that unregisters it."""
        self._playback_listeners.append(listener)

        def _remove() -> None:
            if listener in self._playback_listeners:
                self._playback_listeners.remove(listener)

        return _remove

    def _set_playback(self, state: PlaybackState) -> None:
        if state == self._playback:
            return
        self._playback = state
        for listener in list(self._playback_listeners):
            try:
                listener(state)
            except Exception as e:
                _LOG.error(f"Playback listener error: {e}")

    def start_discovery(
        self,
        service_id: Optional[str] = None,
        on_found: Optional[ReceiverCallback] = None,
        on_lost: Optional[ReceiverCallback] = None,
    ) -> None:
        try:
            self._binding.start_discovery(service_id, on_found or (lambda _r: None), on_lost or (lambda _r: None))
        except Exception as e:
            _LOG.error(f"start_discovery failed: {e}")

    def stop_discovery(self) -> None:
        try:
            self._binding.stop_discovery()
        except Exception as e:
            _LOG.error(f"stop_discovery failed: {e}")

    def connect(self, receiver: Receiver) -> None:
        try:
            self._binding.connect(receiver)
        except Exception as e:
            _LOG.error(f"connect failed: {e}")
        self._connected_id = receiver.id
        self._set_playback(PlaybackState.IDLE)

    async def _run(self, action: str, func: Callable[..., None], *args: Any) -> None:
        try:
            await asyncio.to_thread(func, *args)
        except Exception as e:
            _LOG.error(f"Fire TV {action} failed: {e}")

    async def play(self, url: str = "") -> None:
        await self._run("play", self._binding.play, url)
        self._set_playback(PlaybackState.PLAYING)

    async def pause(self) -> None:
        await self._run("pause", self._binding.pause)
        self._set_playback(PlaybackState.PAUSED)

    async def stop(self) -> None:
        await self._run("stop", self._binding.stop)
        self._set_playback(PlaybackState.IDLE)


class FireTvReceivers:
    """
    Receivers currently visible on the network, keyed by receiver id.

    All discovery channels report into the same instance, so a receiver seen
    by several of them is listed once. Safe to feed from SDK threads.
    """

    def __init__(self, on_change: Optional[Callable[[List[Receiver]], None]] = None):
        self._receivers: Dict[str, Receiver] = {}
        self._guard = threading.Lock()
        self._on_change = on_change

    def on_found(self, receiver: Receiver) -> None:
        with self._guard:
            existing = self._receivers.get(receiver.id)
            merged = receiver
            if existing is not None:
                merged = replace(
                    existing,
                    friendly_name=receiver.friendly_name or existing.friendly_name,
                    address=receiver.address or existing.address,
                )
                if merged == existing:
                    return
            self._receivers[receiver.id] = merged
        _LOG.info(f"Fire TV found: {merged.friendly_name} ({merged.id})")
        self._notify()

    def on_lost(self, receiver: Receiver) -> None:
        with self._guard:
            removed = self._receivers.pop(receiver.id, None)
        if removed is not None:
            _LOG.info(f"Fire TV lost: {removed.friendly_name} ({removed.id})")
            self._notify()

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.all())
        except Exception as e:
            _LOG.error(f"Receiver change callback error: {e}")

    def all(self) -> List[Receiver]:
        with self._guard:
            return sorted(self._receivers.values(), key=lambda r: (r.friendly_name.lower(), r.id))

    def __len__(self) -> int:
        with self._guard:
            return len(self._receivers)
