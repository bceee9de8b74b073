"""
UniRemote Remote entity: feeds remote buttons into the command dispatcher.

:copyright: (c) 2025 by Meir Miyara.
:license: MPL-2.0, see LICENSE for more details.
"""

import logging
from typing import Any, Optional

import ucapi
from ucapi import StatusCodes
from ucapi.remote import Attributes, Commands, Features, States
from ucapi.ui import Buttons, DeviceButtonMapping, EntityCommand, UiPage, create_ui_text, create_ui_icon, Size

from uc_intg_uniremote.client import Outcome, OutcomeKind
from uc_intg_uniremote.commands import AbstractCommand, RemoteMode, parse_command
from uc_intg_uniremote.config import UniRemoteConfig
from uc_intg_uniremote.dispatch import CommandDispatcher

_LOG = logging.getLogger(__name__)

CMD_POWER_ON = "POWER_ON"
CMD_FIRE_TV_INPUT = "FIRE_TV_INPUT"
CMD_MODE_ROKU = "MODE_ROKU"
CMD_MODE_FIRE_TV = "MODE_FIRE_TV"
LAUNCH_PREFIX = "LAUNCH:"

_STATUS_BY_KIND = {
    OutcomeKind.SUCCESS: StatusCodes.OK,
    OutcomeKind.PRECONDITION: StatusCodes.BAD_REQUEST,
    OutcomeKind.UNSUPPORTED: StatusCodes.NOT_IMPLEMENTED,
    OutcomeKind.TRANSPORT: StatusCodes.SERVICE_UNAVAILABLE,
    OutcomeKind.PROTOCOL: StatusCodes.SERVER_ERROR,
}


def outcome_to_status(outcome: Outcome) -> StatusCodes:
    return _STATUS_BY_KIND.get(outcome.kind, StatusCodes.SERVER_ERROR)


def create_button_mapping() -> list[DeviceButtonMapping]:
    """Physical remote buttons, bound to the same simple commands as the UI pages."""
    def press(command: AbstractCommand | str) -> EntityCommand:
        return EntityCommand(cmd_id=command if isinstance(command, str) else command.name)

    return [
        DeviceButtonMapping(button=Buttons.BACK, short_press=press(AbstractCommand.BACK)),
        DeviceButtonMapping(button=Buttons.HOME, short_press=press(AbstractCommand.HOME)),
        DeviceButtonMapping(button=Buttons.DPAD_UP, short_press=press(AbstractCommand.UP)),
        DeviceButtonMapping(button=Buttons.DPAD_DOWN, short_press=press(AbstractCommand.DOWN)),
        DeviceButtonMapping(button=Buttons.DPAD_LEFT, short_press=press(AbstractCommand.LEFT)),
        DeviceButtonMapping(button=Buttons.DPAD_RIGHT, short_press=press(AbstractCommand.RIGHT)),
        DeviceButtonMapping(button=Buttons.DPAD_MIDDLE, short_press=press(AbstractCommand.OK)),
        DeviceButtonMapping(button=Buttons.VOLUME_UP, short_press=press(AbstractCommand.VOLUME_UP)),
        DeviceButtonMapping(button=Buttons.VOLUME_DOWN, short_press=press(AbstractCommand.VOLUME_DOWN)),
        DeviceButtonMapping(button=Buttons.PLAY, short_press=press(AbstractCommand.PLAY),
                            long_press=press(AbstractCommand.PAUSE)),
        DeviceButtonMapping(button=Buttons.POWER, short_press=press(CMD_POWER_ON),
                            long_press=press(AbstractCommand.POWER)),
    ]


class UniRemoteRemote(ucapi.Remote):

    def __init__(self, dispatcher: CommandDispatcher, config: UniRemoteConfig, api: ucapi.IntegrationAPI):
        self._dispatcher = dispatcher
        self._config = config
        self._api = api
        self._last_outcome: Optional[Outcome] = None

        entity_id = "remote_uniremote"
        simple_commands = self._simple_commands()
        self._commands = simple_commands

        attributes = {
            Attributes.STATE: States.UNKNOWN
        }

        features = [
            Features.ON_OFF,
            Features.SEND_CMD
        ]

        super().__init__(
            identifier=entity_id,
            name="UniRemote",
            features=features,
            attributes=attributes,
            simple_commands=simple_commands,
            button_mapping=create_button_mapping(),
            ui_pages=self._create_ui_pages(),
            cmd_handler=self._cmd_handler
        )

        _LOG.info(f"Created remote entity: {entity_id} with {len(simple_commands)} commands")

    def _simple_commands(self) -> list[str]:
        commands = [command.name for command in AbstractCommand]
        commands.extend([CMD_POWER_ON, CMD_FIRE_TV_INPUT, CMD_MODE_ROKU, CMD_MODE_FIRE_TV])
        commands.extend(f"{LAUNCH_PREFIX}{favorite.app_id}" for favorite in self._config.settings.favorites)
        return commands

    def _create_ui_pages(self) -> list[UiPage]:
        pages = []

        main_page = UiPage("main", "Main Controls", grid=Size(4, 6))

        main_page.add(create_ui_text("Power", 0, 0, cmd=CMD_POWER_ON))
        main_page.add(create_ui_text("Off", 1, 0, cmd=AbstractCommand.POWER.name))
        main_page.add(create_ui_text("Back", 2, 0, cmd=AbstractCommand.BACK.name))
        main_page.add(create_ui_text("Home", 3, 0, cmd=AbstractCommand.HOME.name))

        main_page.add(create_ui_icon("uc:up", 1, 1, cmd=AbstractCommand.UP.name))
        main_page.add(create_ui_icon("uc:left", 0, 2, cmd=AbstractCommand.LEFT.name))
        main_page.add(create_ui_text("OK", 1, 2, cmd=AbstractCommand.OK.name))
        main_page.add(create_ui_icon("uc:right", 2, 2, cmd=AbstractCommand.RIGHT.name))
        main_page.add(create_ui_icon("uc:down", 1, 3, cmd=AbstractCommand.DOWN.name))

        main_page.add(create_ui_text("Play", 0, 4, cmd=AbstractCommand.PLAY.name))
        main_page.add(create_ui_text("Pause", 1, 4, cmd=AbstractCommand.PAUSE.name))
        main_page.add(create_ui_text("Vol+", 2, 4, cmd=AbstractCommand.VOLUME_UP.name))
        main_page.add(create_ui_text("Vol-", 3, 4, cmd=AbstractCommand.VOLUME_DOWN.name))

        main_page.add(create_ui_text("Roku", 0, 5, cmd=CMD_MODE_ROKU))
        main_page.add(create_ui_text("Fire TV", 1, 5, cmd=CMD_MODE_FIRE_TV))
        main_page.add(create_ui_text("HDMI", 2, 5, cmd=CMD_FIRE_TV_INPUT))

        pages.append(main_page)

        favorites = self._config.settings.favorites
        if favorites:
            favorites_page = UiPage("favorites", "Favorites", grid=Size(4, 6))
            for index, favorite in enumerate(favorites[:24]):
                favorites_page.add(create_ui_text(
                    favorite.label or favorite.app_id, index % 4, index // 4,
                    cmd=f"{LAUNCH_PREFIX}{favorite.app_id}"
                ))
            pages.append(favorites_page)

        return pages

    async def _cmd_handler(self, entity: ucapi.Entity, cmd_id: str, params: dict[str, Any] | None) -> StatusCodes:
        _LOG.debug(f"Remote {self.id} received command: {cmd_id} with params: {params}")

        try:
            if cmd_id == Commands.ON:
                outcome = await self._dispatcher.power_on(self._config.settings)
                if outcome.ok:
                    await self._update_attributes({Attributes.STATE: States.ON})

            elif cmd_id == Commands.OFF:
                settings = self._config.settings
                outcome = await self._dispatcher.dispatch(AbstractCommand.POWER, settings.last_mode, settings)
                if outcome.ok:
                    await self._update_attributes({Attributes.STATE: States.OFF})

            elif cmd_id == Commands.SEND_CMD:
                if not params or "command" not in params:
                    _LOG.warning(f"SEND_CMD missing command parameter for remote {self.id}")
                    return StatusCodes.BAD_REQUEST
                outcome = await self.handle_named_command(str(params["command"]))

            else:
                outcome = await self.handle_named_command(cmd_id)

        except Exception as e:
            _LOG.error(f"Unexpected error for remote {self.id}: {e}")
            return StatusCodes.SERVER_ERROR

        if outcome is None:
            _LOG.warning(f"Unknown command for remote {self.id}: {cmd_id}")
            return StatusCodes.NOT_IMPLEMENTED

        self._record(outcome)
        return outcome_to_status(outcome)

    async def handle_named_command(self, name: str) -> Optional[Outcome]:
        """Run a simple command by name. Returns None when the name is unknown."""
        settings = self._config.settings

        if name == CMD_POWER_ON:
            return await self._dispatcher.power_on(settings)
        if name == CMD_FIRE_TV_INPUT:
            return await self._dispatcher.switch_to_fire_tv_input(settings)
        if name in (CMD_MODE_ROKU, CMD_MODE_FIRE_TV):
            mode = RemoteMode.FIRE_TV if name == CMD_MODE_FIRE_TV else RemoteMode.ROKU
            self._config.update(last_mode=mode)
            _LOG.info(f"Remote mode set to {mode.value}")
            return Outcome.success(f"Mode set to {mode.value}")
        if name.startswith(LAUNCH_PREFIX):
            app_id = name[len(LAUNCH_PREFIX):].strip()
            if not app_id:
                return None
            return await self._dispatcher.launch(app_id, settings)

        command = parse_command(name)
        if command is None:
            return None
        return await self._dispatcher.dispatch(command, settings.last_mode, settings)

    def _record(self, outcome: Outcome) -> None:
        self._last_outcome = outcome
        if outcome.ok:
            _LOG.debug(f"Remote {self.id}: {outcome.message}")
        else:
            _LOG.warning(f"Remote {self.id}: {outcome.kind.value} - {outcome.message}")

    async def _update_attributes(self, attributes: dict[str, Any]) -> None:
        try:
            for key, value in attributes.items():
                self.attributes[key] = value

            if self._api and self._api.configured_entities:
                self._api.configured_entities.update_attributes(self.id, attributes)

            _LOG.debug(f"Updated attributes for remote {self.id}: {attributes}")
        except Exception as e:
            _LOG.error(f"Failed to update attributes for remote {self.id}: {e}")

    async def refresh(self) -> bool:
        """Probe the Roku and set the entity state from the result."""
        outcome = await self._dispatcher.validate_roku(self._config.settings)
        state = States.ON if outcome.ok else States.UNAVAILABLE
        await self._update_attributes({Attributes.STATE: state})
        self._record(outcome)
        return outcome.ok

    @property
    def last_outcome(self) -> Optional[Outcome]:
        return self._last_outcome

    @property
    def commands(self) -> list[str]:
        return list(self._commands)
