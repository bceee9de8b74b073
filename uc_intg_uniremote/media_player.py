"""
UniRemote Media Player entity

:copyright: (c) 2025 by Meir Miyara.
:license: MPL-2.0, see LICENSE for more details.
"""

import logging
from typing import Any, Callable, Optional

import ucapi
from ucapi import StatusCodes
from ucapi.media_player import Attributes, Commands, DeviceClasses, Features, MediaPlayer, States

from uc_intg_uniremote.client import Outcome, OutcomeKind
from uc_intg_uniremote.commands import AbstractCommand, RemoteMode
from uc_intg_uniremote.config import UniRemoteConfig
from uc_intg_uniremote.dispatch import CommandDispatcher
from uc_intg_uniremote.firetv import PlaybackState
from uc_intg_uniremote.remote import outcome_to_status

_LOG = logging.getLogger(__name__)

_STATE_BY_PLAYBACK = {
    PlaybackState.IDLE: States.ON,
    PlaybackState.PLAYING: States.PLAYING,
    PlaybackState.PAUSED: States.PAUSED,
}


def playback_to_state(playback: PlaybackState) -> States:
    return _STATE_BY_PLAYBACK.get(playback, States.UNKNOWN)


class UniRemoteMediaPlayer(MediaPlayer):
    """
    Fire TV playback as a media player.

    The state follows the Fire TV client's playback mirror, which reflects the
    last command sent rather than what the device reports. Volume and power go
    to the Roku TV.
    """

    def __init__(self, dispatcher: CommandDispatcher, config: UniRemoteConfig, api: ucapi.IntegrationAPI):
        self._dispatcher = dispatcher
        self._config = config
        self._api = api
        self._remove_listener: Optional[Callable[[], None]] = None

        entity_id = "mp_uniremote_firetv"

        features = [
            Features.ON_OFF,
            Features.PLAY_PAUSE,
            Features.STOP,
            Features.VOLUME_UP_DOWN,
            Features.SELECT_SOURCE
        ]

        attributes = {
            Attributes.STATE: playback_to_state(dispatcher.fire_tv.playback),
            Attributes.SOURCE: "",
            Attributes.SOURCE_LIST: self._source_list()
        }

        super().__init__(
            identifier=entity_id,
            name="Fire TV",
            features=features,
            attributes=attributes,
            device_class=DeviceClasses.STREAMING_BOX,
            cmd_handler=self._cmd_handler
        )

        self._remove_listener = dispatcher.fire_tv.add_playback_listener(self._on_playback)
        _LOG.info(f"Created media player entity: {entity_id}")

    def _source_list(self) -> list[str]:
        return [favorite.label or favorite.app_id for favorite in self._config.settings.favorites]

    def _on_playback(self, playback: PlaybackState) -> None:
        self._set_attributes({Attributes.STATE: playback_to_state(playback)})

    def close(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None

    async def _cmd_handler(self, entity: ucapi.Entity, cmd_id: str, params: dict[str, Any] | None) -> StatusCodes:
        _LOG.debug(f"Media player {self.id} received command: {cmd_id}")
        settings = self._config.settings

        try:
            if cmd_id == Commands.ON:
                outcome = await self._dispatcher.power_on(settings)

            elif cmd_id == Commands.OFF:
                outcome = await self._dispatcher.dispatch(AbstractCommand.POWER, RemoteMode.FIRE_TV, settings)
                if outcome.ok:
                    self._set_attributes({Attributes.STATE: States.OFF})

            elif cmd_id == Commands.PLAY_PAUSE:
                command = (AbstractCommand.PAUSE if self._dispatcher.fire_tv.playback == PlaybackState.PLAYING
                           else AbstractCommand.PLAY)
                outcome = await self._dispatcher.dispatch(command, RemoteMode.FIRE_TV, settings)

            elif cmd_id == Commands.STOP:
                outcome = await self._dispatcher.stop_fire_tv(settings)

            elif cmd_id == Commands.VOLUME_UP:
                outcome = await self._dispatcher.dispatch(AbstractCommand.VOLUME_UP, RemoteMode.FIRE_TV, settings)

            elif cmd_id == Commands.VOLUME_DOWN:
                outcome = await self._dispatcher.dispatch(AbstractCommand.VOLUME_DOWN, RemoteMode.FIRE_TV, settings)

            elif cmd_id == Commands.SELECT_SOURCE and params and "source" in params:
                outcome = await self._select_source(str(params["source"]))

            else:
                _LOG.warning(f"Unsupported command for media player {self.id}: {cmd_id}")
                return StatusCodes.NOT_IMPLEMENTED

        except Exception as e:
            _LOG.error(f"Unexpected error for media player {self.id}: {e}")
            return StatusCodes.SERVER_ERROR

        if not outcome.ok:
            _LOG.warning(f"Media player {self.id}: {outcome.message}")
        return outcome_to_status(outcome)

    async def _select_source(self, source: str) -> Outcome:
        settings = self._config.settings
        for favorite in settings.favorites:
            if source in (favorite.label, favorite.app_id):
                outcome = await self._dispatcher.launch(favorite.app_id, settings)
                if outcome.ok:
                    self._set_attributes({Attributes.SOURCE: source})
                return outcome
        return Outcome.failure(OutcomeKind.PRECONDITION, f"Unknown source: {source}")

    def refresh_sources(self) -> None:
        self._set_attributes({Attributes.SOURCE_LIST: self._source_list()})

    def _set_attributes(self, attributes: dict[str, Any]) -> None:
        try:
            for key, value in attributes.items():
                self.attributes[key] = value

            if self._api and self._api.configured_entities:
                self._api.configured_entities.update_attributes(self.id, attributes)

            _LOG.debug(f"Updated attributes for media player {self.id}: {attributes}")
        except Exception as e:
            _LOG.error(f"Failed to update attributes for media player {self.id}: {e}")
