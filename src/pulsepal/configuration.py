"""
Device configuration: load PulsePal channel settings from a YAML file and
apply them to a connected device.

This module provides the building blocks host applications use to bring a
device into a known state right after connecting::

    from pulsepal.configuration import load_config, configure_all

    config = load_config("config/pulsepal.yaml")
    with PulsePal(config.port) as pulse_pal:
        report = configure_all(pulse_pal, config)
        if not report.all_ok:
            print(report.summary)

Example file::

    port: /dev/ttyACM0
    client_id: RIG-01
    output_channels:
      1:
        biphasic: true
        phase1_voltage: 5.0
        phase1_duration: 0.001
        trigger_on_channel1: true
    trigger_channels:
      1:
        trigger_mode: toggle
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .device import PulsePal
from .encoder import coerce_enum
from .exceptions import ConnectionError, PulsePalError, ValidationError
from .parameters import ParameterSetting, parse_parameter_name
from .types import OutputChannel, ParameterCode, TriggerChannel

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChannelConfig:
    """Validated settings for one output or trigger channel."""

    channel: OutputChannel | TriggerChannel
    settings: tuple[ParameterSetting, ...]

    @property
    def label(self) -> str:
        """Human-readable label, e.g. ``output 1`` or ``trigger 2``."""
        kind = "trigger" if isinstance(self.channel, TriggerChannel) else "output"
        return f"{kind} {int(self.channel)}"


@dataclass(frozen=True)
class DeviceConfig:
    """Top-level configuration loaded from a YAML file."""

    port: str
    client_id: str | None = None
    output_channels: list[ChannelConfig] = field(default_factory=list)
    trigger_channels: list[ChannelConfig] = field(default_factory=list)

    @property
    def channels(self) -> list[ChannelConfig]:
        return [*self.output_channels, *self.trigger_channels]


# ---------------------------------------------------------------------------
# Config loading & validation
# ---------------------------------------------------------------------------


def load_config(path: str | Path) -> DeviceConfig:
    """Load and validate a device configuration from a YAML file.

    Args:
        path: Path to the YAML config file.

    Returns:
        A validated :class:`DeviceConfig`.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValidationError: If the config is malformed or contains invalid values.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    return parse_config(raw)


def parse_config(raw: object) -> DeviceConfig:
    """Validate an already-decoded configuration mapping."""
    if not isinstance(raw, dict):
        raise ValidationError(f"Config must be a YAML mapping, got {type(raw).__name__}")

    port = raw.get("port")
    if not isinstance(port, str) or not port:
        raise ValidationError("Config must specify a non-empty 'port' string")

    client_id = raw.get("client_id")
    if client_id is not None and not isinstance(client_id, str):
        raise ValidationError(f"'client_id' must be a string, got {type(client_id).__name__}")

    outputs = _parse_channels(raw.get("output_channels", {}), OutputChannel, "output_channels")
    triggers = _parse_channels(raw.get("trigger_channels", {}), TriggerChannel, "trigger_channels")
    if not outputs and not triggers:
        raise ValidationError("Config must configure at least one output or trigger channel")

    return DeviceConfig(
        port=port,
        client_id=client_id,
        output_channels=outputs,
        trigger_channels=triggers,
    )


def _parse_channels(
    raw_channels: object,
    channel_type: type[OutputChannel] | type[TriggerChannel],
    section: str,
) -> list[ChannelConfig]:
    if raw_channels is None:
        return []
    if not isinstance(raw_channels, dict):
        raise ValidationError(f"'{section}' must be a mapping of channel number to settings")

    channels = [
        _parse_channel(key, data, channel_type, section) for key, data in raw_channels.items()
    ]
    channels.sort(key=lambda c: int(c.channel))
    return channels


def _parse_channel(
    key: object,
    data: object,
    channel_type: type[OutputChannel] | type[TriggerChannel],
    section: str,
) -> ChannelConfig:
    """Parse and validate a single channel entry from the config."""
    try:
        number = int(key)
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"{section}: channel key must be an integer, got {key!r}") from exc

    channel = coerce_enum(channel_type, number, f"{section} channel")

    if not isinstance(data, dict) or not data:
        raise ValidationError(f"{section} {number}: settings must be a non-empty mapping")

    settings = []
    for name, value in data.items():
        code = parse_parameter_name(str(name))
        is_trigger_setting = code is ParameterCode.TRIGGER_MODE
        if is_trigger_setting != (channel_type is TriggerChannel):
            raise ValidationError(f"{section} {number}: '{name}' cannot be set on this channel")
        try:
            settings.append(ParameterSetting(code, value))
        except ValidationError as exc:
            raise ValidationError(f"{section} {number}: {exc}") from exc

    return ChannelConfig(channel=channel, settings=tuple(settings))


# ---------------------------------------------------------------------------
# Applying
# ---------------------------------------------------------------------------


@dataclass
class ChannelResult:
    """Outcome of configuring a single channel."""

    channel_config: ChannelConfig
    success: bool
    message: str


@dataclass
class ConfigureReport:
    """Aggregate outcome of a :func:`configure_all` call."""

    results: list[ChannelResult] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def summary(self) -> str:
        passed = sum(1 for r in self.results if r.success)
        total = len(self.results)
        return f"{passed}/{total} channels {'OK' if self.all_ok else 'FAILED'}"


def configure_channel(device: PulsePal, ch: ChannelConfig) -> ChannelResult:
    """Send every setting of one channel.

    Args:
        device: An open :class:`~pulsepal.device.PulsePal`.
        ch: Channel configuration to apply.

    Returns:
        A :class:`ChannelResult` indicating success or failure.
    """
    try:
        for setting in ch.settings:
            device.apply_setting(ch.channel, setting)
        msg = f"{ch.label} → {len(ch.settings)} settings applied"
        logger.info("Configured %s", msg)
        return ChannelResult(ch, success=True, message=msg)

    except PulsePalError as exc:
        msg = f"{ch.label} → FAILED: {exc}"
        logger.error("Configuration failed: %s", msg)
        return ChannelResult(ch, success=False, message=msg)


def configure_all(device: PulsePal, config: DeviceConfig) -> ConfigureReport:
    """Apply the client id and every channel in *config*.

    Raises:
        ConnectionError: If *device* is not open.
    """
    if not device.is_open:
        raise ConnectionError("Device must be open before it can be configured")
    logger.debug("Configuring PulsePal firmware %d", device.firmware_version)

    if config.client_id is not None:
        device.set_client_id(config.client_id)

    report = ConfigureReport()
    for ch in config.channels:
        report.results.append(configure_channel(device, ch))
    return report
