"""
Routes abstract remote commands to the Roku or Fire TV backend.

:copyright: (c) 2025 by Meir Miyara.
:license: MPL-2.0, see LICENSE for more details.
"""

import logging
from typing import Callable, Optional

from uc_intg_uniremote.client import Outcome, OutcomeKind, RokuControlClient
from uc_intg_uniremote.commands import (
    FIRE_TV_MEDIA_COMMANDS,
    ROKU_KEY_POWER_ON,
    ROKU_ROUTED_COMMANDS,
    AbstractCommand,
    RemoteMode,
    map_command,
)
from uc_intg_uniremote.config import Settings
from uc_intg_uniremote.firetv import FireTvClient, Receiver

_LOG = logging.getLogger(__name__)

MSG_CONFIGURE_ROKU = "Please configure Roku IP in settings"
MSG_UNSUPPORTED_ROKU = "Command not supported for Roku"
MSG_SENT_TO_ROKU = "Command sent to Roku"
MSG_SENT_TO_FIRE_TV = "Command sent to Fire TV"
MSG_SELECT_FIRE_TV = "Select a Fire TV in Settings → Scan for Fire TV"
MSG_FIRE_TV_NAVIGATION = "Navigation/Home/Back not supported by Fire TV Fling SDK"
MSG_SET_FIRE_TV_INPUT = "Set Fire TV input in Settings"
MSG_SWITCHED_INPUT = "Switched to Fire TV input"
MSG_ROKU_CONNECTED = "Roku connected successfully"


class CommandDispatcher:
    """
    Stateless router between the remote UI and the two backends.

    Each call returns exactly one ``Outcome``. Preconditions are checked
    before any network call. Volume and power always target the Roku TV,
    whatever the active mode.
    """

    def __init__(self, roku: RokuControlClient, fire_tv: FireTvClient):
        self._roku = roku
        self._fire_tv = fire_tv

    @property
    def fire_tv(self) -> FireTvClient:
        return self._fire_tv

    async def dispatch(self, command: AbstractCommand, mode: RemoteMode, settings: Settings) -> Outcome:
        _LOG.debug(f"Dispatching {command.name} in {mode.value} mode")
        if command in ROKU_ROUTED_COMMANDS or mode == RemoteMode.ROKU:
            return await self._dispatch_roku(command, settings)
        return await self._dispatch_fire_tv(command, settings)

    async def _dispatch_roku(self, command: AbstractCommand, settings: Settings) -> Outcome:
        if not settings.roku_ip:
            return Outcome.failure(OutcomeKind.PRECONDITION, MSG_CONFIGURE_ROKU)

        key = map_command(command, RemoteMode.ROKU)
        if key is None:
            return Outcome.failure(OutcomeKind.UNSUPPORTED, MSG_UNSUPPORTED_ROKU)

        outcome = await self._roku.send_key(settings.roku_ip, key)
        if outcome.ok:
            return Outcome.success(MSG_SENT_TO_ROKU)
        return outcome

    async def _dispatch_fire_tv(self, command: AbstractCommand, settings: Settings) -> Outcome:
        if command not in FIRE_TV_MEDIA_COMMANDS:
            return Outcome.failure(OutcomeKind.UNSUPPORTED, MSG_FIRE_TV_NAVIGATION)
        if not settings.fire_tv_id:
            return Outcome.failure(OutcomeKind.PRECONDITION, MSG_SELECT_FIRE_TV)

        self._ensure_receiver(settings.fire_tv_id)
        if command == AbstractCommand.PLAY:
            await self._fire_tv.play("")
        else:
            await self._fire_tv.pause()
        return Outcome.success(MSG_SENT_TO_FIRE_TV)

    def _ensure_receiver(self, fire_tv_id: str) -> None:
        # connect() resets playback to IDLE.
        if self._fire_tv.connected_id != fire_tv_id:
            self._fire_tv.connect(Receiver(fire_tv_id, "", ""))

    async def stop_fire_tv(self, settings: Settings) -> Outcome:
        if not settings.fire_tv_id:
            return Outcome.failure(OutcomeKind.PRECONDITION, MSG_SELECT_FIRE_TV)
        self._ensure_receiver(settings.fire_tv_id)
        await self._fire_tv.stop()
        return Outcome.success(MSG_SENT_TO_FIRE_TV)

    async def launch(self, app_id: str, settings: Settings) -> Outcome:
        """Launch a favorite app or input on the Roku, independent of the active mode."""
        if not settings.roku_ip:
            return Outcome.failure(OutcomeKind.PRECONDITION, MSG_CONFIGURE_ROKU)

        outcome = await self._roku.launch(settings.roku_ip, app_id)
        if not outcome.ok:
            return outcome
        favorite = settings.favorite_for(app_id)
        label = favorite.label if favorite and favorite.label else "app"
        return Outcome.success(f"Launching {label}")

    async def switch_to_fire_tv_input(self, settings: Settings) -> Outcome:
        if not settings.fire_tv_input:
            return Outcome.failure(OutcomeKind.PRECONDITION, MSG_SET_FIRE_TV_INPUT)
        if not settings.roku_ip:
            return Outcome.failure(OutcomeKind.PRECONDITION, MSG_CONFIGURE_ROKU)

        outcome = await self._roku.launch(settings.roku_ip, settings.fire_tv_input)
        if outcome.ok:
            return Outcome.success(MSG_SWITCHED_INPUT)
        return outcome

    async def validate_roku(self, settings: Settings) -> Outcome:
        if not settings.roku_ip:
            return Outcome.failure(OutcomeKind.PRECONDITION, MSG_CONFIGURE_ROKU)

        outcome = await self._roku.validate(settings.roku_ip)
        if outcome.ok:
            return Outcome.success(MSG_ROKU_CONNECTED)
        return Outcome.failure(outcome.kind, f"Roku validation failed: {outcome.message}")

    async def power_on(self, settings: Settings) -> Outcome:
        if not settings.roku_ip:
            return Outcome.failure(OutcomeKind.PRECONDITION, MSG_CONFIGURE_ROKU)

        outcome = await self._roku.send_key(settings.roku_ip, ROKU_KEY_POWER_ON)
        if outcome.ok:
            return Outcome.success(MSG_SENT_TO_ROKU)
        return outcome

    def select_receiver(self, receiver: Receiver, persist: Optional[Callable[[str], None]] = None) -> None:
        """Make ``receiver`` the Fire TV target and ask the settings store to remember it."""
        self._fire_tv.connect(receiver)
        if persist is not None:
            persist(receiver.id)
        _LOG.info(f"Fire TV selected: {receiver.friendly_name or receiver.id}")
