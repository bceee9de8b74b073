"""
Abstract remote commands and their per-backend key tables.

:copyright: (c) 2025 by Meir Miyara.
:license: MPL-2.0, see LICENSE for more details.
"""

from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class AbstractCommand(Enum):
    HOME = "home"
    BACK = "back"
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    OK = "ok"
    PLAY = "play"
    PAUSE = "pause"
    VOLUME_UP = "volume_up"
    VOLUME_DOWN = "volume_down"
    POWER = "power"


class RemoteMode(Enum):
    ROKU = "ROKU"
    FIRE_TV = "FIRE_TV"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "RemoteMode":
        if value and value.upper() == "FIRE_TV":
            return cls.FIRE_TV
        return cls.ROKU


# Roku ECP key names are case-sensitive.
ROKU_KEY_POWER_ON = "PowerOn"
ROKU_KEY_POWER_OFF = "PowerOff"
ROKU_KEY_VOLUME_MUTE = "VolumeMute"

ROKU_ECP_KEYS: Mapping[AbstractCommand, str] = MappingProxyType({
    AbstractCommand.HOME: "Home",
    AbstractCommand.BACK: "Back",
    AbstractCommand.UP: "Up",
    AbstractCommand.DOWN: "Down",
    AbstractCommand.LEFT: "Left",
    AbstractCommand.RIGHT: "Right",
    AbstractCommand.OK: "Select",
    AbstractCommand.PLAY: "Play",
    AbstractCommand.PAUSE: "Pause",
    AbstractCommand.VOLUME_UP: "VolumeUp",
    AbstractCommand.VOLUME_DOWN: "VolumeDown",
    AbstractCommand.POWER: ROKU_KEY_POWER_OFF,
})

ROKU_KEYS = tuple(ROKU_ECP_KEYS.values()) + (ROKU_KEY_POWER_ON, ROKU_KEY_VOLUME_MUTE)

# ADB style key event names, all caps.
FIRE_TV_ADB_KEYS: Mapping[AbstractCommand, str] = MappingProxyType({
    AbstractCommand.HOME: "HOME",
    AbstractCommand.BACK: "BACK",
    AbstractCommand.UP: "UP",
    AbstractCommand.DOWN: "DOWN",
    AbstractCommand.LEFT: "LEFT",
    AbstractCommand.RIGHT: "RIGHT",
    AbstractCommand.OK: "CENTER",
    AbstractCommand.PLAY: "PLAY",
    AbstractCommand.PAUSE: "PAUSE",
    AbstractCommand.VOLUME_UP: "VOLUME_UP",
    AbstractCommand.VOLUME_DOWN: "VOLUME_DOWN",
    AbstractCommand.POWER: "POWER",
})

# The Fire TV media controller only handles playback; volume and power
# always go to the Roku TV.
FIRE_TV_MEDIA_COMMANDS = frozenset({AbstractCommand.PLAY, AbstractCommand.PAUSE})

ROKU_ROUTED_COMMANDS = frozenset({
    AbstractCommand.VOLUME_UP,
    AbstractCommand.VOLUME_DOWN,
    AbstractCommand.POWER,
})

def map_command(command: AbstractCommand, backend: RemoteMode) -> Optional[str]:
    """Return the protocol key for ``command`` on ``backend``, or None if unsupported."""
    if backend == RemoteMode.ROKU:
        return ROKU_ECP_KEYS.get(command)
    if command in FIRE_TV_MEDIA_COMMANDS:
        return FIRE_TV_ADB_KEYS.get(command)
    return None


def parse_command(name: str) -> Optional[AbstractCommand]:
    """Resolve a command by enum name or value, e.g. ``VOLUME_UP`` or ``volume_up``."""
    if not name:
        return None
    key = name.strip()
    try:
        return AbstractCommand[key.upper()]
    except KeyError:
        pass
    try:
        return AbstractCommand(key.lower())
    except ValueError:
        return None
