import pytest
from ucapi import StatusCodes
from ucapi.media_player import Attributes as MediaAttributes, Commands as MediaCommands, States as MediaStates
from ucapi.remote import Attributes, Commands, States
from ucapi.ui import Buttons

from uc_intg_uniremote.client import Outcome, OutcomeKind, RokuControlClient
from uc_intg_uniremote.commands import RemoteMode
from uc_intg_uniremote.config import Favorite, UniRemoteConfig
from uc_intg_uniremote.dispatch import CommandDispatcher
from uc_intg_uniremote.firetv import FireTvClient
from uc_intg_uniremote.media_player import UniRemoteMediaPlayer
from uc_intg_uniremote.remote import UniRemoteRemote, create_button_mapping, outcome_to_status


@pytest.fixture
def config(tmp_path):
    config = UniRemoteConfig(str(tmp_path / "config.json"))
    config.update(roku_ip="127.0.0.1", fire_tv_input="tvinput.hdmi1")
    config.update(favorites=[Favorite("Netflix", "12")])
    return config


@pytest.fixture
def dispatcher(simulator):
    return CommandDispatcher(RokuControlClient(port=simulator.port), FireTvClient(sdk_module="no_such_fling_sdk"))


@pytest.fixture
def remote(dispatcher, config):
    return UniRemoteRemote(dispatcher, config, None)


@pytest.fixture
def media_player(dispatcher, config):
    return UniRemoteMediaPlayer(dispatcher, config, None)


@pytest.mark.parametrize("kind,status", [
    (OutcomeKind.SUCCESS, StatusCodes.OK),
    (OutcomeKind.PRECONDITION, StatusCodes.BAD_REQUEST),
    (OutcomeKind.UNSUPPORTED, StatusCodes.NOT_IMPLEMENTED),
    (OutcomeKind.TRANSPORT, StatusCodes.SERVICE_UNAVAILABLE),
    (OutcomeKind.PROTOCOL, StatusCodes.SERVER_ERROR),
])
def test_outcome_to_status(kind, status):
    assert outcome_to_status(Outcome(kind, "")) == status


def test_remote_simple_commands(remote):
    commands = remote.commands

    assert "VOLUME_UP" in commands
    assert "MODE_FIRE_TV" in commands
    assert "LAUNCH:12" in commands


async def test_remote_sends_keys(simulator, remote):
    assert await remote._cmd_handler(remote, "OK", None) == StatusCodes.OK
    assert await remote._cmd_handler(remote, Commands.SEND_CMD, {"command": "volume_up"}) == StatusCodes.OK

    assert simulator.keypresses == ["Select", "VolumeUp"]
    assert remote.last_outcome == Outcome.success("Command sent to Roku")


async def test_remote_on_off(simulator, remote):
    assert await remote._cmd_handler(remote, Commands.ON, None) == StatusCodes.OK
    assert remote.attributes[Attributes.STATE] == States.ON
    assert await remote._cmd_handler(remote, Commands.OFF, None) == StatusCodes.OK
    assert remote.attributes[Attributes.STATE] == States.OFF

    assert simulator.keypresses == ["PowerOn", "PowerOff"]


async def test_remote_modes_and_launch(simulator, remote, config):
    assert await remote._cmd_handler(remote, "MODE_FIRE_TV", None) == StatusCodes.OK
    assert config.settings.last_mode == RemoteMode.FIRE_TV

    # Navigation is not forwarded to the Fire TV.
    assert await remote._cmd_handler(remote, "HOME", None) == StatusCodes.NOT_IMPLEMENTED
    # No Fire TV selected yet.
    assert await remote._cmd_handler(remote, "PLAY", None) == StatusCodes.BAD_REQUEST

    assert await remote._cmd_handler(remote, "LAUNCH:12", None) == StatusCodes.OK
    assert remote.last_outcome == Outcome.success("Launching Netflix")
    assert await remote._cmd_handler(remote, "FIRE_TV_INPUT", None) == StatusCodes.OK

    assert await remote._cmd_handler(remote, "MODE_ROKU", None) == StatusCodes.OK
    assert await remote._cmd_handler(remote, "HOME", None) == StatusCodes.OK

    assert simulator.launches == ["12", "tvinput.hdmi1"]
    assert simulator.keypresses == ["Home"]


async def test_remote_unknown_and_malformed_commands(remote):
    assert await remote._cmd_handler(remote, "TELEPORT", None) == StatusCodes.NOT_IMPLEMENTED
    assert await remote._cmd_handler(remote, Commands.SEND_CMD, {}) == StatusCodes.BAD_REQUEST


async def test_remote_reports_forbidden_roku(simulator, remote):
    simulator.forbidden = True

    assert await remote._cmd_handler(remote, "BACK", None) == StatusCodes.SERVER_ERROR
    assert "External Control" in remote.last_outcome.message
    assert await remote.refresh() is False
    assert remote.attributes[Attributes.STATE] == States.UNAVAILABLE


async def test_media_player_mirrors_playback(dispatcher, media_player, config):
    config.save_fire_tv_id("G070VM1234")

    assert media_player.attributes[MediaAttributes.STATE] == MediaStates.ON
    assert await media_player._cmd_handler(media_player, MediaCommands.PLAY_PAUSE, None) == StatusCodes.OK
    assert media_player.attributes[MediaAttributes.STATE] == MediaStates.PLAYING
    assert await media_player._cmd_handler(media_player, MediaCommands.PLAY_PAUSE, None) == StatusCodes.OK
    assert media_player.attributes[MediaAttributes.STATE] == MediaStates.PAUSED
    assert await media_player._cmd_handler(media_player, MediaCommands.STOP, None) == StatusCodes.OK
    assert media_player.attributes[MediaAttributes.STATE] == MediaStates.ON

    media_player.close()
    await dispatcher.fire_tv.play()
    assert media_player.attributes[MediaAttributes.STATE] == MediaStates.ON


async def test_media_player_volume_and_sources(simulator, media_player):
    assert media_player.attributes[MediaAttributes.SOURCE_LIST] == ["Netflix"]

    assert await media_player._cmd_handler(media_player, MediaCommands.VOLUME_UP, None) == StatusCodes.OK
    assert await media_player._cmd_handler(
        media_player, MediaCommands.SELECT_SOURCE, {"source": "Netflix"}
    ) == StatusCodes.OK
    assert await media_player._cmd_handler(
        media_player, MediaCommands.SELECT_SOURCE, {"source": "Hulu"}
    ) == StatusCodes.BAD_REQUEST

    assert simulator.keypresses == ["VolumeUp"]
    assert simulator.launches == ["12"]
    assert media_player.attributes[MediaAttributes.SOURCE] == "Netflix"


async def test_media_player_stop_requires_fire_tv(media_player):
    assert await media_player._cmd_handler(media_player, MediaCommands.STOP, None) == StatusCodes.BAD_REQUEST


async def test_media_player_play_pause_pushes_no_idle_state(media_player, config, monkeypatch):
    config.save_fire_tv_id("G070VM1234")
    pushed = []
    original = media_player._set_attributes

    def record(attributes):
        pushed.append(attributes.get(MediaAttributes.STATE))
        original(attributes)

    monkeypatch.setattr(media_player, "_set_attributes", record)

    for _ in range(3):
        assert await media_player._cmd_handler(media_player, MediaCommands.PLAY_PAUSE, None) == StatusCodes.OK

    assert pushed == [MediaStates.PLAYING, MediaStates.PAUSED, MediaStates.PLAYING]


def test_physical_buttons_use_remote_commands(remote):
    mapping = {entry.button: entry for entry in create_button_mapping()}

    assert mapping[Buttons.DPAD_MIDDLE].short_press.cmd_id == "OK"
    assert mapping[Buttons.HOME].short_press.cmd_id == "HOME"
    assert mapping[Buttons.PLAY].long_press.cmd_id == "PAUSE"
    for entry in mapping.values():
        for press in (entry.short_press, entry.long_press):
            if press is not None:
                assert press.cmd_id in remote.commands
