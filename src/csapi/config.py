"""Harness configuration file.

A YAML file describing the homeservers a test run may talk to:

    default_homeserver: hs1
    sync_until_timeout: 10
    debug: false
    homeservers:
      - name: hs1
        base_url: http://localhost:8008
      - name: hs2
        base_url: http://localhost:8009

The file is found at $CSAPI_CONFIG, else ./csapi.yaml, else
$XDG_CONFIG_HOME/csapi/config.yaml.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import HarnessConfigError
from .options import DEFAULT_SYNC_UNTIL_TIMEOUT, HarnessOptions


def get_config_dir() -> Path:
    """Get the user configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "csapi"


def get_config_path() -> Path:
    """Resolve which config file to use (it may not exist)."""
    env_path = os.environ.get("CSAPI_CONFIG")
    if env_path:
        return Path(env_path)

    local = Path.cwd() / "csapi.yaml"
    if local.exists():
        return local

    return get_config_dir() / "config.yaml"


@dataclass
class Homeserver:
    """A named homeserver under test."""

    name: str
    base_url: str

    def to_dict(self) -> dict:
        return {"name": self.name, "base_url": self.base_url}

    @classmethod
    def from_dict(cls, data: dict) -> "Homeserver":
        try:
            return cls(name=data["name"], base_url=data["base_url"])
        except (KeyError, TypeError) as e:
            raise HarnessConfigError(f"homeserver entry needs name and base_url: {data!r}") from e


@dataclass
class HarnessConfig:
    """Harness configuration loaded from YAML."""

    homeservers: list[Homeserver] = field(default_factory=list)
    default_homeserver: str | None = None
    sync_until_timeout: float = DEFAULT_SYNC_UNTIL_TIMEOUT
    debug: bool = False

    def save(self, path: Path | None = None) -> Path:
        """Save config to file, returning the path written."""
        path = path or get_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        data: dict[str, Any] = {
            "sync_until_timeout": self.sync_until_timeout,
            "debug": self.debug,
        }
        if self.default_homeserver:
            data["default_homeserver"] = self.default_homeserver
        if self.homeservers:
            data["homeservers"] = [hs.to_dict() for hs in self.homeservers]

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        return path

    @classmethod
    def load(cls, path: Path | None = None) -> "HarnessConfig":
        """Load config from file, or return defaults if there is none."""
        path = path or get_config_path()

        if not path.exists():
            return cls()

        with open(path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise HarnessConfigError(f"invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise HarnessConfigError(f"{path} must contain a mapping")

        entries = data.get("homeservers") or []
        if not isinstance(entries, list):
            raise HarnessConfigError(f"{path}: homeservers must be a list")
        homeservers = [Homeserver.from_dict(hs) for hs in entries]

        try:
            sync_until_timeout = float(data.get("sync_until_timeout", DEFAULT_SYNC_UNTIL_TIMEOUT))
        except (TypeError, ValueError) as e:
            raise HarnessConfigError(
                f"{path}: sync_until_timeout must be a number, got {data['sync_until_timeout']!r}"
            ) from e

        return cls(
            homeservers=homeservers,
            default_homeserver=data.get("default_homeserver"),
            sync_until_timeout=sync_until_timeout,
            debug=bool(data.get("debug", False)),
        )

    def get_homeserver(self, name: str | None = None) -> Homeserver | None:
        """Get a homeserver by name, or the default one.

        With no name and no default set, the first listed homeserver is used.
        """
        name = name or self.default_homeserver
        if name is None:
            return self.homeservers[0] if self.homeservers else None
        for hs in self.homeservers:
            if hs.name == name:
                return hs
        return None

    def add_homeserver(self, homeserver: Homeserver) -> None:
        """Add a homeserver, replacing any with the same name."""
        self.homeservers = [hs for hs in self.homeservers if hs.name != homeserver.name]
        self.homeservers.append(homeserver)

    def to_options(self, name: str | None = None) -> HarnessOptions:
        """Build client options for a homeserver.

        Falls back to environment variables when the homeserver is not listed.
        """
        hs = self.get_homeserver(name)
        if name is not None and hs is None:
            raise HarnessConfigError(f"homeserver {name!r} is not configured")
        return HarnessOptions(
            base_url=hs.base_url if hs else None,
            hs_name=hs.name if hs else None,
            sync_until_timeout=self.sync_until_timeout,
            debug=self.debug or None,
        )
