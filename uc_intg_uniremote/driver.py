"""
UniRemote integration driver for Unfolded Circle Remote.

:copyright: (c) 2025 by Meir Miyara.
:license: MPL-2.0, see LICENSE for more details.
"""

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional
from aiohttp import web

import ucapi
from ucapi import DeviceStates, Events, IntegrationSetupError, SetupComplete, SetupError, RequestUserInput, UserDataResponse

from uc_intg_uniremote.client import RokuControlClient
from uc_intg_uniremote.config import UniRemoteConfig, format_favorites, parse_favorites
from uc_intg_uniremote.discovery import RokuDiscovery, RokuDevice
from uc_intg_uniremote.dispatch import CommandDispatcher
from uc_intg_uniremote.firetv import FireTvClient, FireTvReceivers, Receiver
from uc_intg_uniremote.media_player import UniRemoteMediaPlayer
from uc_intg_uniremote.multicast import MulticastLock
from uc_intg_uniremote.remote import UniRemoteRemote

api: ucapi.IntegrationAPI | None = None
config: UniRemoteConfig | None = None
dispatcher: CommandDispatcher | None = None
receivers: FireTvReceivers | None = None
remote: UniRemoteRemote | None = None
media_player: UniRemoteMediaPlayer | None = None
discovered_rokus: Dict[str, RokuDevice] = {}
entities_ready: bool = False
initialization_lock: asyncio.Lock = asyncio.Lock()
fire_tv_scan_timer: asyncio.TimerHandle | None = None

HEALTH_PORT = 9090
FIRE_TV_SCAN_TIMEOUT = 15.0

_LOG = logging.getLogger(__name__)


def _create_dispatcher() -> CommandDispatcher:
    multicast_lock = MulticastLock("UniRemote")
    return CommandDispatcher(RokuControlClient(), FireTvClient(multicast_lock=multicast_lock))


async def _initialize_integration() -> bool:
    global api, config, remote, media_player, entities_ready

    async with initialization_lock:
        if entities_ready:
            _LOG.debug("Entities already initialized, skipping")
            return True

        if not config or not config.is_configured():
            _LOG.error("Configuration not found or invalid.")
            if api:
                await api.set_device_state(DeviceStates.ERROR)
            return False

        settings = config.settings
        _LOG.info("Initializing UniRemote integration for Roku at %s", settings.roku_ip)
        await api.set_device_state(DeviceStates.CONNECTING)

        api.available_entities.clear()
        if media_player is not None:
            media_player.close()

        remote = UniRemoteRemote(dispatcher, config, api)
        media_player = UniRemoteMediaPlayer(dispatcher, config, api)
        api.available_entities.add(remote)
        api.available_entities.add(media_player)

        # Entities must exist before CONNECTED is reported, or subscriptions race them.
        entities_ready = True

        _start_fire_tv_discovery()

        outcome = await dispatcher.validate_roku(settings)
        if outcome.ok:
            await api.set_device_state(DeviceStates.CONNECTED)
            _LOG.info("UniRemote integration initialization completed successfully")
        else:
            await api.set_device_state(DeviceStates.ERROR)
            _LOG.error("UniRemote initialized but the Roku is not reachable: %s", outcome.message)
        return outcome.ok


def _start_fire_tv_discovery() -> None:
    global receivers, fire_tv_scan_timer

    fire_tv = dispatcher.fire_tv
    if not fire_tv.is_available:
        _LOG.info("Fire TV SDK unavailable, Fire TV discovery skipped")
        return

    if fire_tv_scan_timer is not None:
        fire_tv_scan_timer.cancel()
    loop = asyncio.get_running_loop()
    # SDK callbacks can arrive on vendor threads.
    receivers = FireTvReceivers(
        on_change=lambda found: loop.call_soon_threadsafe(_on_receivers_changed, found)
    )
    fire_tv.start_discovery(config.settings.fling_sid, receivers.on_found, receivers.on_lost)
    fire_tv_scan_timer = loop.call_later(FIRE_TV_SCAN_TIMEOUT, _on_fire_tv_scan_timeout)


def _stop_fire_tv_discovery() -> None:
    global fire_tv_scan_timer

    if fire_tv_scan_timer is not None:
        fire_tv_scan_timer.cancel()
        fire_tv_scan_timer = None
    if dispatcher is not None:
        dispatcher.fire_tv.stop_discovery()


def _on_fire_tv_scan_timeout() -> None:
    global fire_tv_scan_timer

    fire_tv_scan_timer = None
    if receivers is None or len(receivers) == 0:
        _LOG.warning("No Fire TV found after %.0f seconds, discovery stopped", FIRE_TV_SCAN_TIMEOUT)
    else:
        _LOG.info("Configured Fire TV not found after %.0f seconds, discovery stopped", FIRE_TV_SCAN_TIMEOUT)
    _stop_fire_tv_discovery()


def _on_receivers_changed(found: List[Receiver]) -> None:
    if not found or config is None:
        return

    selected = config.settings.fire_tv_id
    if not selected:
        dispatcher.select_receiver(found[0], config.save_fire_tv_id)
    elif all(receiver.id != selected for receiver in found):
        return

    if fire_tv_scan_timer is not None:
        _LOG.info("Fire TV ready, discovery stopped")
        _stop_fire_tv_discovery()


async def setup_handler(msg: ucapi.SetupDriver) -> ucapi.SetupAction:
    if isinstance(msg, ucapi.DriverSetupRequest):
        roku_ip = msg.setup_data.get("roku_ip", "").strip()
        fire_tv_input = msg.setup_data.get("fire_tv_input", "").strip()
        favorites = msg.setup_data.get("favorites", "")

        if roku_ip:
            return await _handle_roku_setup(roku_ip, fire_tv_input, favorites)
        return await _request_roku_selection(fire_tv_input, favorites)

    elif isinstance(msg, UserDataResponse):
        selected = msg.input_values.get("roku_device", "").strip()
        fire_tv_input = msg.input_values.get("fire_tv_input", "").strip()
        favorites = msg.input_values.get("favorites", "")
        if not selected:
            _LOG.error("No Roku selected")
            return SetupError(IntegrationSetupError.OTHER)
        return await _handle_roku_setup(selected, fire_tv_input, favorites)

    elif isinstance(msg, ucapi.AbortDriverSetup):
        _LOG.info("Setup aborted")

    return SetupError(IntegrationSetupError.OTHER)


async def _handle_roku_setup(roku_ip: str, fire_tv_input: str, favorites: str) -> ucapi.SetupAction:
    global entities_ready

    candidate = config.settings.with_changes(
        roku_ip=roku_ip, fire_tv_input=fire_tv_input, favorites=parse_favorites(favorites)
    )
    errors = config.validate_settings(candidate)
    if errors:
        _LOG.error("Invalid settings: %s", ", ".join(errors))
        return SetupError(IntegrationSetupError.OTHER)

    _LOG.info("Testing connection to Roku at %s", roku_ip)
    try:
        outcome = await dispatcher.validate_roku(candidate)
        if not outcome.ok:
            _LOG.error(outcome.message)
            return SetupError(IntegrationSetupError.CONNECTION_REFUSED)

        config.update(roku_ip=roku_ip, fire_tv_input=fire_tv_input, favorites=candidate.favorites)
        _LOG.info("Roku configuration saved, initializing integration...")

        entities_ready = False
        await _initialize_integration()
        return SetupComplete()

    except Exception as e:
        _LOG.error("Setup error: %s", e, exc_info=True)
        return SetupError(IntegrationSetupError.OTHER)


async def _request_roku_selection(fire_tv_input: str, favorites: str) -> ucapi.SetupAction:
    """Scan for Rokus and let the user pick one."""
    _LOG.info("No Roku address entered, scanning the network...")
    devices = await RokuDiscovery(multicast_lock=MulticastLock("UniRemote-SSDP")).scan()

    discovered_rokus.clear()
    for device in devices:
        discovered_rokus[device.ip] = device

    if not devices:
        _LOG.error("No Roku found on the network")
        return SetupError(IntegrationSetupError.NOT_FOUND)

    items = [{"id": device.ip, "label": {"en": device.display_name}} for device in devices]
    settings: List[Dict[str, Any]] = [
        {
            "id": "roku_device",
            "label": {"en": "Roku TV"},
            "field": {"dropdown": {"value": items[0]["id"], "items": items}}
        },
        {
            "id": "fire_tv_input",
            "label": {"en": "Fire TV HDMI input"},
            "description": {"en": "Roku input the Fire TV is plugged into (e.g., tvinput.hdmi1)"},
            "field": {"text": {"value": fire_tv_input}}
        },
        {
            "id": "favorites",
            "label": {"en": "Favorites"},
            "description": {"en": "Roku apps as label=app id, comma separated (e.g., Netflix=12, YouTube=837)"},
            "field": {"text": {"value": favorites or format_favorites(config.settings.favorites)}}
        }
    ]


    return RequestUserInput(
        title={"en": f"Select Roku ({len(devices)} found)"},
        settings=settings
    )


async def on_subscribe_entities(entity_ids: List[str]):
    _LOG.info("Entities subscribed: %s", entity_ids)

    if not entities_ready:
        _LOG.warning("Subscription before entities ready, initializing now")
        await _initialize_integration()
        if not entities_ready:
            return

    for entity_id in entity_ids:
        try:
            if remote is not None and remote.id == entity_id:
                await remote.refresh()
            elif media_player is not None and media_player.id == entity_id:
                media_player.refresh_sources()
        except Exception as e:
            _LOG.error(f"Error pushing update for entity {entity_id}: {e}", exc_info=True)


async def on_connect():
    _LOG.info("Remote Two connected")

    if config:
        config.reload_from_disk()
        _LOG.debug("Configuration reloaded from disk")

    if config and config.is_configured():
        if not entities_ready:
            _LOG.warning("Entities not ready on connect - initializing now")
            await _initialize_integration()
        elif remote is not None:
            reachable = await remote.refresh()
            await api.set_device_state(DeviceStates.CONNECTED if reachable else DeviceStates.ERROR)
    else:
        _LOG.info("Not configured, waiting for setup")
        if api:
            await api.set_device_state(DeviceStates.DISCONNECTED)


async def on_disconnect():
    _LOG.info("Remote Two disconnected")


async def on_unsubscribe_entities(entity_ids: List[str]):
    _LOG.info("Entities unsubscribed: %s", entity_ids)


async def health_check(request):
    return web.Response(text="OK", status=200)


async def start_health_server(port: int = HEALTH_PORT) -> Optional[web.AppRunner]:
    """Start health check HTTP server."""
    try:
        app = web.Application()
        app.router.add_get('/health', health_check)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, '0.0.0.0', port)
        await site.start()
        _LOG.info("Health check server started on port %d", port)
        return runner
    except Exception as e:
        _LOG.error("Failed to start health server: %s", e)
        return None


async def main():
    global api, config, dispatcher

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    _LOG.info("Starting UniRemote Integration Driver")
    health_runner = None

    try:
        loop = asyncio.get_running_loop()

        config_dir = os.getenv("UC_CONFIG_HOME", "./")
        config_file_path = os.path.join(config_dir, "config.json")
        config = UniRemoteConfig(config_file_path)
        dispatcher = _create_dispatcher()

        driver_path = os.path.join(os.path.dirname(__file__), "..", "driver.json")
        api = ucapi.IntegrationAPI(loop)

        if config.is_configured():
            _LOG.info(f"Configuration summary: {config.get_summary()}")
            await _initialize_integration()
        else:
            _LOG.info("No existing configuration found, waiting for setup")

        await api.init(os.path.abspath(driver_path), setup_handler)

        health_runner = await start_health_server()

        api.add_listener(Events.SUBSCRIBE_ENTITIES, on_subscribe_entities)
        api.add_listener(Events.UNSUBSCRIBE_ENTITIES, on_unsubscribe_entities)
        api.add_listener(Events.CONNECT, on_connect)
        api.add_listener(Events.DISCONNECT, on_disconnect)

        if not config.is_configured():
            await api.set_device_state(DeviceStates.DISCONNECTED)

        _LOG.info("UniRemote integration driver started successfully")

        await asyncio.Future()

    except Exception as e:
        _LOG.critical("Fatal error in main: %s", e, exc_info=True)
    finally:
        _LOG.info("Shutting down UniRemote integration")
        _stop_fire_tv_discovery()
        if media_player is not None:
            media_player.close()
        if health_runner is not None:
            await health_runner.cleanup()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        _LOG.info("Integration stopped by user")
    except Exception as e:
        _LOG.error(f"Integration failed: {e}")
        raise
