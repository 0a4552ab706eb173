"""Centralized client configuration."""

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SOCKET_PATH = Path("/var/run/charon.vici")
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "vici-client" / "config.toml"


class Config(BaseModel):
    """Connection and event listener settings."""

    model_config = ConfigDict(frozen=True)

    socket_path: Path = Field(default=DEFAULT_SOCKET_PATH, description="Unix domain socket of the daemon")
    connect_timeout: float = Field(default=5.0, gt=0, description="Timeout for establishing a connection, in seconds")
    event_buffer_size: int = Field(default=16, ge=1, description="Events buffered before the event pump blocks")
    drain_events_on_close: bool = Field(
        default=False, description="Keep buffered events readable after the listener closes instead of discarding them"
    )
    unregister_timeout: float = Field(
        default=2.0, ge=0, description="Time to wait for unregister confirmations when a listener stops, in seconds"
    )
    log_path: Path | None = Field(default=None, description="Log file (stderr when unset)")

    @staticmethod
    def build(config_path: Path | None = None, socket_path: Path | None = None) -> "Config":
        """Build a Config from defaults, an optional TOML file, and an explicit socket path.

        Args:
            config_path: TOML file to read. Defaults to ``~/.config/vici-client/config.toml``; a missing file is ignored.
            socket_path: Overrides the socket path from the file.

        Raises:
            pydantic.ValidationError: A value in the file is out of range or of the wrong type.

        """
        resolved_path = config_path if config_path is not None else DEFAULT_CONFIG_PATH

        kwargs: dict[str, Any] = {}
        if resolved_path.is_file():
            with resolved_path.open("rb") as f:
                toml_data = tomllib.load(f)
            for name in Config.model_fields:
                if name in toml_data:
                    kwargs[name] = toml_data[name]
        if socket_path is not None:
            kwargs["socket_path"] = socket_path

        return Config(**kwargs)
