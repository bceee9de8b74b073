import pytest

from uc_intg_uniremote.client import Outcome, OutcomeKind, RokuCommandError, RokuControlClient
from uc_intg_uniremote.commands import AbstractCommand, RemoteMode
from uc_intg_uniremote.config import Favorite, Settings
from uc_intg_uniremote.dispatch import CommandDispatcher
from uc_intg_uniremote.firetv import FireTvClient, PlaybackState, Receiver

NAVIGATION = [
    AbstractCommand.HOME, AbstractCommand.BACK, AbstractCommand.UP, AbstractCommand.DOWN,
    AbstractCommand.LEFT, AbstractCommand.RIGHT, AbstractCommand.OK,
]
ROKU_ONLY = [AbstractCommand.VOLUME_UP, AbstractCommand.VOLUME_DOWN, AbstractCommand.POWER]


class Harness:
    """Dispatcher wired to a Roku client whose HTTP layer is replaced by a recorder."""

    def __init__(self, monkeypatch, status=200):
        self.requests = []
        self.fire_tv_calls = []
        self.roku = RokuControlClient()
        self.fire_tv = FireTvClient(sdk_module="no_such_fling_sdk")

        async def fake_send_once(method, url, timeout, max_status=204):
            self.requests.append((method, url))
            if status > max_status:
                raise RokuCommandError(status, "Forbidden", url)
            return status

        original_connect = self.fire_tv.connect
        original_play = self.fire_tv.play
        original_pause = self.fire_tv.pause

        def connect(receiver):
            self.fire_tv_calls.append(("connect", receiver))
            original_connect(receiver)

        async def play(url=""):
            self.fire_tv_calls.append(("play", url))
            await original_play(url)

        async def pause():
            self.fire_tv_calls.append(("pause",))
            await original_pause()

        monkeypatch.setattr(self.roku, "_send_once", fake_send_once)
        monkeypatch.setattr(self.fire_tv, "connect", connect)
        monkeypatch.setattr(self.fire_tv, "play", play)
        monkeypatch.setattr(self.fire_tv, "pause", pause)
        self.dispatcher = CommandDispatcher(self.roku, self.fire_tv)


@pytest.fixture
def harness(monkeypatch):
    return Harness(monkeypatch)


async def test_volume_up_end_to_end(harness):
    outcome = await harness.dispatcher.dispatch(
        AbstractCommand.VOLUME_UP, RemoteMode.ROKU, Settings(roku_ip="10.0.0.5")
    )

    assert outcome == Outcome.success("Command sent to Roku")
    assert harness.requests == [("POST", "http://10.0.0.5:8060/keypress/VolumeUp")]


async def test_end_to_end_against_simulator(simulator):
    dispatcher = CommandDispatcher(RokuControlClient(port=simulator.port), FireTvClient(sdk_module="no_such_fling_sdk"))

    outcome = await dispatcher.dispatch(AbstractCommand.OK, RemoteMode.ROKU, Settings(roku_ip="127.0.0.1"))

    assert outcome == Outcome.success("Command sent to Roku")
    assert simulator.keypresses == ["Select"]


@pytest.mark.parametrize("mode", list(RemoteMode))
@pytest.mark.parametrize("command", ROKU_ONLY)
async def test_missing_roku_address_makes_no_calls(harness, mode, command):
    outcome = await harness.dispatcher.dispatch(command, mode, Settings(fire_tv_id="abc"))

    assert outcome.kind == OutcomeKind.PRECONDITION
    assert outcome.message == "Please configure Roku IP in settings"
    assert harness.requests == []
    assert harness.fire_tv_calls == []


@pytest.mark.parametrize("command,key", [
    (AbstractCommand.VOLUME_UP, "VolumeUp"),
    (AbstractCommand.VOLUME_DOWN, "VolumeDown"),
    (AbstractCommand.POWER, "PowerOff"),
])
async def test_volume_and_power_go_to_roku_in_fire_tv_mode(harness, command, key):
    settings = Settings(roku_ip="10.0.0.5", fire_tv_id="abc", last_mode=RemoteMode.FIRE_TV)

    outcome = await harness.dispatcher.dispatch(command, RemoteMode.FIRE_TV, settings)

    assert outcome.ok
    assert harness.requests == [("POST", f"http://10.0.0.5:8060/keypress/{key}")]
    assert harness.fire_tv_calls == []


@pytest.mark.parametrize("command", NAVIGATION)
async def test_fire_tv_navigation_is_unsupported(harness, command):
    settings = Settings(roku_ip="10.0.0.5", fire_tv_id="abc")

    outcome = await harness.dispatcher.dispatch(command, RemoteMode.FIRE_TV, settings)

    assert outcome.kind == OutcomeKind.UNSUPPORTED
    assert outcome.message == "Navigation/Home/Back not supported by Fire TV Fling SDK"
    assert harness.requests == []
    assert harness.fire_tv_calls == []


@pytest.mark.parametrize("command", [AbstractCommand.PLAY, AbstractCommand.PAUSE])
async def test_fire_tv_media_requires_selected_receiver(harness, command):
    outcome = await harness.dispatcher.dispatch(command, RemoteMode.FIRE_TV, Settings(roku_ip="10.0.0.5"))

    assert outcome.kind == OutcomeKind.PRECONDITION
    assert outcome.message == "Select a Fire TV in Settings → Scan for Fire TV"
    assert harness.fire_tv_calls == []


async def test_fire_tv_play_and_pause(harness):
    settings = Settings(fire_tv_id="G070VM1234")

    play = await harness.dispatcher.dispatch(AbstractCommand.PLAY, RemoteMode.FIRE_TV, settings)
    pause = await harness.dispatcher.dispatch(AbstractCommand.PAUSE, RemoteMode.FIRE_TV, settings)

    assert play == pause == Outcome.success("Command sent to Fire TV")
    assert harness.fire_tv_calls == [
        ("connect", Receiver("G070VM1234", "", "")),
        ("play", ""),
        ("pause",),
    ]
    assert harness.fire_tv.playback == PlaybackState.PAUSED
    assert harness.requests == []


async def test_repeated_fire_tv_presses_do_not_reset_playback(harness):
    seen = []
    harness.fire_tv.add_playback_listener(seen.append)
    settings = Settings(fire_tv_id="G070VM1234")

    for command in (AbstractCommand.PLAY, AbstractCommand.PAUSE, AbstractCommand.PLAY):
        await harness.dispatcher.dispatch(command, RemoteMode.FIRE_TV, settings)

    assert seen == [PlaybackState.PLAYING, PlaybackState.PAUSED, PlaybackState.PLAYING]


async def test_changed_fire_tv_id_reconnects(harness):
    await harness.dispatcher.dispatch(AbstractCommand.PLAY, RemoteMode.FIRE_TV, Settings(fire_tv_id="first"))
    await harness.dispatcher.dispatch(AbstractCommand.PLAY, RemoteMode.FIRE_TV, Settings(fire_tv_id="second"))

    connects = [call[1].id for call in harness.fire_tv_calls if call[0] == "connect"]
    assert connects == ["first", "second"]
    assert harness.fire_tv.connected_id == "second"


async def test_stop_fire_tv(harness):
    missing = await harness.dispatcher.stop_fire_tv(Settings())
    await harness.dispatcher.dispatch(AbstractCommand.PLAY, RemoteMode.FIRE_TV, Settings(fire_tv_id="abc"))
    stopped = await harness.dispatcher.stop_fire_tv(Settings(fire_tv_id="abc"))

    assert missing == Outcome.failure(OutcomeKind.PRECONDITION, "Select a Fire TV in Settings → Scan for Fire TV")
    assert stopped == Outcome.success("Command sent to Fire TV")
    assert harness.fire_tv.playback == PlaybackState.IDLE
    assert [call[0] for call in harness.fire_tv_calls] == ["connect", "play"]


async def test_roku_mode_media_goes_to_roku(harness):
    outcome = await harness.dispatcher.dispatch(
        AbstractCommand.PLAY, RemoteMode.ROKU, Settings(roku_ip="10.0.0.5", fire_tv_id="abc")
    )

    assert outcome.ok
    assert harness.requests == [("POST", "http://10.0.0.5:8060/keypress/Play")]
    assert harness.fire_tv_calls == []


async def test_roku_failures_pass_through(monkeypatch):
    harness = Harness(monkeypatch, status=403)

    outcome = await harness.dispatcher.dispatch(AbstractCommand.HOME, RemoteMode.ROKU, Settings(roku_ip="10.0.0.5"))

    assert outcome.kind == OutcomeKind.PROTOCOL
    assert "External Control" in outcome.message


async def test_launch_uses_favorite_label(harness):
    settings = Settings(roku_ip="10.0.0.5", favorites=(Favorite("Netflix", "12"),), last_mode=RemoteMode.FIRE_TV)

    named = await harness.dispatcher.launch("12", settings)
    unnamed = await harness.dispatcher.launch("2285", settings)

    assert named == Outcome.success("Launching Netflix")
    assert unnamed == Outcome.success("Launching app")
    assert harness.requests == [
        ("POST", "http://10.0.0.5:8060/launch/12"),
        ("POST", "http://10.0.0.5:8060/launch/2285"),
    ]


async def test_launch_requires_roku_address(harness):
    outcome = await harness.dispatcher.launch("12", Settings())

    assert outcome.kind == OutcomeKind.PRECONDITION
    assert harness.requests == []


async def test_switch_to_fire_tv_input(harness):
    missing_input = await harness.dispatcher.switch_to_fire_tv_input(Settings(roku_ip="10.0.0.5"))
    missing_roku = await harness.dispatcher.switch_to_fire_tv_input(Settings(fire_tv_input="tvinput.hdmi2"))
    switched = await harness.dispatcher.switch_to_fire_tv_input(
        Settings(roku_ip="10.0.0.5", fire_tv_input="tvinput.hdmi2")
    )

    assert missing_input == Outcome.failure(OutcomeKind.PRECONDITION, "Set Fire TV input in Settings")
    assert missing_roku.kind == OutcomeKind.PRECONDITION
    assert switched == Outcome.success("Switched to Fire TV input")
    assert harness.requests == [("POST", "http://10.0.0.5:8060/launch/tvinput.hdmi2")]


async def test_validate_roku(monkeypatch):
    ok = Harness(monkeypatch)
    assert await ok.dispatcher.validate_roku(Settings(roku_ip="10.0.0.5")) == Outcome.success(
        "Roku connected successfully"
    )
    assert ok.requests == [("GET", "http://10.0.0.5:8060/query/device-info")]

    failing = Harness(monkeypatch, status=403)
    outcome = await failing.dispatcher.validate_roku(Settings(roku_ip="10.0.0.5"))
    assert outcome == Outcome.failure(OutcomeKind.PROTOCOL, "Roku validation failed: HTTP 403: Forbidden")


async def test_power_on(harness):
    outcome = await harness.dispatcher.power_on(Settings(roku_ip="10.0.0.5"))

    assert outcome.ok
    assert harness.requests == [("POST", "http://10.0.0.5:8060/keypress/PowerOn")]


def test_select_receiver_connects_and_persists(harness):
    persisted = []
    receiver = Receiver("G070VM1234", "Bedroom")

    harness.dispatcher.select_receiver(receiver, persisted.append)

    assert harness.fire_tv_calls == [("connect", receiver)]
    assert persisted == ["G070VM1234"]


async def test_settings_snapshot_is_not_mutated(harness):
    settings = Settings(roku_ip="10.0.0.5", fire_tv_id="abc")
    before = settings.to_dict()

    for command in AbstractCommand:
        for mode in RemoteMode:
            await harness.dispatcher.dispatch(command, mode, settings)

    assert settings.to_dict() == before
