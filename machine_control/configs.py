"""
Application settings for the machine control system.

Provides typed configuration sections with environment variable overrides.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Final, Mapping, Optional


ENV_PREFIX: Final[str] = "MACHINE_CONTROL_"


# =============================================================================
# Configuration Classes
# =============================================================================


@dataclass(frozen=True)
class RedisSettings:
    """Redis connection settings."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    decode_responses: bool = True


@dataclass(frozen=True)
class DeviceControllerSettings:
    """Smart machine controller settings."""

    base_url: str = "http://localhost:8010"
    # Seconds; a start command that takes longer counts as a failed command.
    start_timeout: float = 30.0


@dataclass(frozen=True)
class IdentitySettings:
    """Identity provider settings."""

    base_url: str = "http://localhost:8020"
    timeout: float = 5.0


@dataclass(frozen=True)
class ReservationSettings:
    """Reservation hold settings."""

    # None disables expiry of abandoned holds.
    max_hold_seconds: Optional[float] = None
    sweep_interval: float = 60.0
    sweep_locations: tuple[str, ...] = ()


@dataclass(frozen=True)
class CommandSettings:
    """Command channel settings."""

    command_channel: str = "machine_control_commands"

    @property
    def response_channel(self) -> str:
        """Get response channel name."""
        return f"{self.command_channel}_response"


@dataclass(frozen=True)
class LoggingSettings:
    """Log output settings. Empty values disable the matching handler."""

    log_file: str = ""
    loki_url: str = ""
    app: str = "machine_control"
    level: str = "DEBUG"


# =============================================================================
# Main Settings
# =============================================================================


@dataclass
class Settings:
    """
    Main application settings.

    Aggregates all configuration sections.
    """

    store_backend: str = "redis"
    redis: RedisSettings = field(default_factory=RedisSettings)
    device: DeviceControllerSettings = field(default_factory=DeviceControllerSettings)
    identity: IdentitySettings = field(default_factory=IdentitySettings)
    reservation: ReservationSettings = field(default_factory=ReservationSettings)
    commands: CommandSettings = field(default_factory=CommandSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from ``MACHINE_CONTROL_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            Settings instance with defaults for unset variables.
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: str) -> str:
            return env.get(f"{ENV_PREFIX}{name}", default)

        max_hold = get("MAX_HOLD_SECONDS", "")

        return cls(
            store_backend=get("STORE_BACKEND", "redis"),
            redis=RedisSettings(
                host=get("REDIS_HOST", RedisSettings.host),
                port=int(get("REDIS_PORT", str(RedisSettings.port))),
                db=int(get("REDIS_DB", str(RedisSettings.db))),
            ),
            device=DeviceControllerSettings(
                base_url=get("DEVICE_URL", DeviceControllerSettings.base_url),
                start_timeout=float(
                    get("DEVICE_START_TIMEOUT", str(DeviceControllerSettings.start_timeout))
                ),
            ),
            identity=IdentitySettings(
                base_url=get("IDENTITY_URL", IdentitySettings.base_url),
                timeout=float(get("IDENTITY_TIMEOUT", str(IdentitySettings.timeout))),
            ),
            reservation=ReservationSettings(
                max_hold_seconds=float(max_hold) if max_hold else None,
                sweep_interval=float(
                    get("SWEEP_INTERVAL", str(ReservationSettings.sweep_interval))
                ),
                sweep_locations=tuple(
                    loc.strip() for loc in get("SWEEP_LOCATIONS", "").split(",") if loc.strip()
                ),
            ),
            commands=CommandSettings(
                command_channel=get("COMMAND_CHANNEL", CommandSettings.command_channel),
            ),
            logging=LoggingSettings(
                log_file=get("LOG_FILE", LoggingSettings.log_file),
                loki_url=get("LOKI_URL", LoggingSettings.loki_url),
                app=get("LOG_APP", LoggingSettings.app),
                level=get("LOG_LEVEL", LoggingSettings.level),
            ),
        )


# =============================================================================
# Settings Singleton
# =============================================================================


_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the process default settings.

    Services accept settings explicitly; this is only the fallback
    used by the entry point and the default logger.

    Returns:
        Settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
