"""
Configuration management for the UniRemote integration.

:copyright: (c) 2025 by Meir Miyara.
:license: MPL-2.0, see LICENSE for more details.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from uc_intg_uniremote.commands import RemoteMode

_LOG = logging.getLogger(__name__)

CONFIG_VERSION = "1.0.0"
DEFAULT_FLING_SID = "amzn.thin.pl"


@dataclass(frozen=True)
class Favorite:
    label: str
    app_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "app_id": self.app_id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Favorite":
        return cls(label=str(data.get("label", "")), app_id=str(data.get("app_id", "")))


@dataclass(frozen=True)
class Settings:
    """
    Immutable snapshot of the persisted settings.

    Consumers read a snapshot and never change it; ``with_changes`` returns a
    new one.
    """

    roku_ip: str = ""
    fire_tv_id: str = ""
    fling_sid: str = DEFAULT_FLING_SID
    last_mode: RemoteMode = RemoteMode.ROKU
    favorites: Tuple[Favorite, ...] = field(default_factory=tuple)
    fire_tv_input: str = ""

    def with_changes(self, **kwargs) -> "Settings":
        if "favorites" in kwargs:
            kwargs["favorites"] = tuple(kwargs["favorites"])
        if isinstance(kwargs.get("last_mode"), str):
            kwargs["last_mode"] = RemoteMode.from_string(kwargs["last_mode"])
        return replace(self, **kwargs)

    def favorite_for(self, app_id: str) -> Optional[Favorite]:
        for favorite in self.favorites:
            if favorite.app_id == app_id:
                return favorite
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roku_ip": self.roku_ip,
            "fire_tv_id": self.fire_tv_id,
            "fling_sid": self.fling_sid,
            "last_mode": self.last_mode.value,
            "favorites": [favorite.to_dict() for favorite in self.favorites],
            "fire_tv_input": self.fire_tv_input,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        return cls(
            roku_ip=data.get("roku_ip", "") or "",
            fire_tv_id=data.get("fire_tv_id", "") or "",
            fling_sid=data.get("fling_sid") or DEFAULT_FLING_SID,
            last_mode=RemoteMode.from_string(data.get("last_mode")),
            favorites=tuple(Favorite.from_dict(item) for item in data.get("favorites", [])),
            fire_tv_input=data.get("fire_tv_input", "") or "",
        )


def parse_favorites(text: str) -> Tuple[Favorite, ...]:
    """
    Parse favorites typed as ``label=app_id`` entries separated by commas or newlines.

    An entry without ``=`` is an app id with no label. A repeated app id replaces
    the earlier entry.
    """
    favorites: Dict[str, Favorite] = {}
    for entry in re.split(r"[,\n]", text or ""):
        entry = entry.strip()
        if not entry:
            continue
        label, _, app_id = entry.rpartition("=")
        favorite = Favorite(label=label.strip(), app_id=app_id.strip())
        favorites.pop(favorite.app_id, None)
        favorites[favorite.app_id] = favorite
    return tuple(favorites.values())


def format_favorites(favorites: Sequence[Favorite]) -> str:
    return ", ".join(f"{f.label}={f.app_id}" if f.label else f.app_id for f in favorites)


def validate_ipv4(address: str) -> List[str]:
    errors = []
    if not address or not address.strip():
        errors.append("IP address cannot be empty")
        return errors

    ip_parts = address.strip().split('.')
    if len(ip_parts) != 4:
        errors.append("Invalid IP address format")
        return errors

    for part in ip_parts:
        try:
            num = int(part)
            if num < 0 or num > 255:
                errors.append("Invalid IP address range")
                break
        except ValueError:
            errors.append("Invalid IP address format")
            break
    return errors


class UniRemoteConfig:
    """JSON-backed settings store. Loaded on construction, written on every change."""

    def __init__(self, config_file_path: str = "config.json"):
        self._config_file_path = config_file_path
        self._settings = Settings()
        self._loaded = False

        config_dir = os.path.dirname(self._config_file_path)
        if config_dir and not os.path.exists(config_dir):
            os.makedirs(config_dir, exist_ok=True)

        self._load_config()

    def _load_config(self) -> None:
        try:
            if os.path.exists(self._config_file_path):
                with open(self._config_file_path, 'r', encoding='utf-8') as file:
                    data = json.load(file)

                self._settings = Settings.from_dict(data.get("settings", {}))
                _LOG.info(f"Loaded configuration (roku_ip={self._settings.roku_ip or 'unset'}, "
                          f"{len(self._settings.favorites)} favorites)")
            else:
                _LOG.info("No existing configuration file found")
                self._settings = Settings()
        except Exception as e:
            _LOG.error(f"Failed to load configuration: {e}")
            self._settings = Settings()
        self._loaded = True

    def _save_config(self) -> None:
        try:
            config_data = {
                "settings": self._settings.to_dict(),
                "version": CONFIG_VERSION,
            }
            with open(self._config_file_path, 'w', encoding='utf-8') as file:
                json.dump(config_data, file, indent=2, ensure_ascii=False)
            _LOG.info("Saved configuration")
        except Exception as e:
            _LOG.error(f"Failed to save configuration: {e}")
            raise

    def reload_from_disk(self) -> None:
        _LOG.debug("Reloading configuration from disk")
        self._load_config()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def config_file_path(self) -> str:
        return self._config_file_path

    def is_configured(self) -> bool:
        return self._loaded and bool(self._settings.roku_ip)

    def update(self, **kwargs) -> Settings:
        """Apply field changes, persist them and return the new snapshot."""
        new_settings = self._settings.with_changes(**kwargs)
        if new_settings != self._settings:
            self._settings = new_settings
            self._save_config()
        return self._settings

    def save_fire_tv_id(self, fire_tv_id: str) -> None:
        self.update(fire_tv_id=fire_tv_id)
        _LOG.info(f"Selected Fire TV saved: {fire_tv_id}")

    def validate_settings(self, settings: Settings) -> List[str]:
        errors = []
        if settings.roku_ip:
            errors.extend(validate_ipv4(settings.roku_ip))
        for favorite in settings.favorites:
            if not favorite.app_id.strip():
                errors.append(f"Favorite '{favorite.label}' has no app id")
        return errors

    def get_summary(self) -> Dict[str, Any]:
        return {
            "roku_ip": self._settings.roku_ip,
            "fire_tv_id": self._settings.fire_tv_id,
            "last_mode": self._settings.last_mode.value,
            "favorites": len(self._settings.favorites),
            "fire_tv_input": self._settings.fire_tv_input,
            "configured": self.is_configured(),
            "config_file": self._config_file_path,
        }
