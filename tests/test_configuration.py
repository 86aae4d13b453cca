"""
Tests for the YAML device configuration module.

Covers:
* Config loading and validation (valid YAML, missing fields, bad values)
* Applying channels (success, failure, whole device)
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from pulsepal import (
    ConnectionError,
    OutputChannel,
    ParameterCode,
    ParameterSetting,
    PulsePal,
    TriggerChannel,
    TriggerMode,
    ValidationError,
)
from pulsepal.configuration import (
    ChannelConfig,
    DeviceConfig,
    configure_all,
    configure_channel,
    load_config,
    parse_config,
)

# ══════════════════════════════════════════════════════════════════════════
#  Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture()
def config_dir(tmp_path: Path) -> Path:
    """Return a temp directory for config files."""
    return tmp_path


def write_config(path: Path, content: str) -> Path:
    """Write a YAML config file and return its path."""
    config_file = path / "test_config.yaml"
    config_file.write_text(textwrap.dedent(content))
    return config_file


VALID_CONFIG = """\
    port: /dev/ttyACM0
    client_id: RIG-01
    output_channels:
      1:
        biphasic: true
        phase1_voltage: 5.0
        phase1_duration: 0.001
      3:
        resting_voltage: 0
        custom_train_identity: 2
        custom_train_target: burst_onset
    trigger_channels:
      1:
        trigger_mode: toggle
"""

MINIMAL_CONFIG = """\
    port: /dev/ttyACM0
    output_channels:
      2:
        phase1_voltage: -2.5
"""


# ══════════════════════════════════════════════════════════════════════════
#  Config loading: valid configs
# ══════════════════════════════════════════════════════════════════════════


class TestLoadConfigValid:
    def test_channel_counts(self, config_dir):
        config = load_config(write_config(config_dir, VALID_CONFIG))
        assert len(config.output_channels) == 2
        assert len(config.trigger_channels) == 1
        assert len(config.channels) == 3

    def test_port_and_client_id(self, config_dir):
        config = load_config(write_config(config_dir, VALID_CONFIG))
        assert config.port == "/dev/ttyACM0"
        assert config.client_id == "RIG-01"

    def test_client_id_optional(self, config_dir):
        config = load_config(write_config(config_dir, MINIMAL_CONFIG))
        assert config.client_id is None
        assert config.trigger_channels == []

    def test_settings_in_file_order(self, config_dir):
        config = load_config(write_config(config_dir, VALID_CONFIG))
        ch1 = config.output_channels[0]
        assert ch1.channel is OutputChannel.CHANNEL1
        assert [s.code for s in ch1.settings] == [
            ParameterCode.BIPHASIC,
            ParameterCode.PHASE1_VOLTAGE,
            ParameterCode.PHASE1_DURATION,
        ]
        assert [s.value for s in ch1.settings] == [True, 5.0, 0.001]

    def test_enum_values_parsed(self, config_dir):
        config = load_config(write_config(config_dir, VALID_CONFIG))
        trigger = config.trigger_channels[0]
        assert trigger.channel is TriggerChannel.CHANNEL1
        assert trigger.settings[0].value is TriggerMode.TOGGLE

    def test_channels_sorted_by_number(self, config_dir):
        content = """\
            port: /dev/ttyACM0
            output_channels:
              4:
                biphasic: false
              2:
                biphasic: true
        """
        config = load_config(write_config(config_dir, content))
        assert [int(ch.channel) for ch in config.output_channels] == [2, 4]

    def test_labels(self, config_dir):
        config = load_config(write_config(config_dir, VALID_CONFIG))
        assert [ch.label for ch in config.channels] == ["output 1", "output 3", "trigger 1"]

    def test_bundled_example_config(self):
        path = Path(__file__).resolve().parent.parent / "config" / "pulsepal.yaml"
        config = load_config(path)
        assert [ch.label for ch in config.channels] == [
            "output 1",
            "output 2",
            "trigger 1",
            "trigger 2",
        ]

    def test_parse_config_from_dict(self):
        config = parse_config({"port": "COM3", "trigger_channels": {2: {"trigger_mode": 2}}})
        assert config.trigger_channels[0].settings[0].value is TriggerMode.PULSE_GATED


# ══════════════════════════════════════════════════════════════════════════
#  Config loading: invalid configs
# ══════════════════════════════════════════════════════════════════════════


class TestLoadConfigInvalid:
    def test_file_not_found(self, config_dir):
        with pytest.raises(FileNotFoundError):
            load_config(config_dir / "nonexistent.yaml")

    def test_not_a_mapping(self, config_dir):
        path = write_config(config_dir, "- just\n- a\n- list\n")
        with pytest.raises(ValidationError, match="mapping"):
            load_config(path)

    def test_missing_port(self, config_dir):
        content = """\
            output_channels:
              1:
                biphasic: true
        """
        with pytest.raises(ValidationError, match="port"):
            load_config(write_config(config_dir, content))

    def test_client_id_not_string(self, config_dir):
        content = """\
            port: /dev/ttyACM0
            client_id: 12
            output_channels:
              1:
                biphasic: true
        """
        with pytest.raises(ValidationError, match="client_id"):
            load_config(write_config(config_dir, content))

    def test_no_channels(self, config_dir):
        with pytest.raises(ValidationError, match="at least one"):
            load_config(write_config(config_dir, "port: /dev/ttyACM0\n"))

    def test_channels_not_a_mapping(self, config_dir):
        content = """\
            port: /dev/ttyACM0
            output_channels:
              - biphasic: true
        """
        with pytest.raises(ValidationError, match="mapping of channel number"):
            load_config(write_config(config_dir, content))

    def test_output_channel_out_of_range(self, config_dir):
        content = """\
            port: /dev/ttyACM0
            output_channels:
              5:
                biphasic: true
        """
        with pytest.raises(ValidationError, match="output_channels channel 5"):
            load_config(write_config(config_dir, content))

    def test_trigger_channel_out_of_range(self, config_dir):
        content = """\
            port: /dev/ttyACM0
            trigger_channels:
              3:
                trigger_mode: normal
        """
        with pytest.raises(ValidationError, match="trigger_channels channel 3"):
            load_config(write_config(config_dir, content))

    def test_non_integer_channel_key(self, config_dir):
        content = """\
            port: /dev/ttyACM0
            output_channels:
              first:
                biphasic: true
        """
        with pytest.raises(ValidationError, match="must be an integer"):
            load_config(write_config(config_dir, content))

    def test_empty_channel(self, config_dir):
        content = """\
            port: /dev/ttyACM0
            output_channels:
              1: {}
        """
        with pytest.raises(ValidationError, match="non-empty mapping"):
            load_config(write_config(config_dir, content))

    def test_unknown_parameter(self, config_dir):
        content = """\
            port: /dev/ttyACM0
            output_channels:
              1:
                amplitude: 3
        """
        with pytest.raises(ValidationError, match="Unknown parameter 'amplitude'"):
            load_config(write_config(config_dir, content))

    def test_trigger_mode_on_output_channel(self, config_dir):
        content = """\
            port: /dev/ttyACM0
            output_channels:
              1:
                trigger_mode: toggle
        """
        with pytest.raises(ValidationError, match="cannot be set"):
            load_config(write_config(config_dir, content))

    def test_output_parameter_on_trigger_channel(self, config_dir):
        content = """\
            port: /dev/ttyACM0
            trigger_channels:
              1:
                biphasic: true
        """
        with pytest.raises(ValidationError, match="cannot be set"):
            load_config(write_config(config_dir, content))

    def test_value_out_of_range_names_channel(self, config_dir):
        content = """\
            port: /dev/ttyACM0
            output_channels:
              2:
                phase1_voltage: 12
        """
        with pytest.raises(ValidationError, match="output_channels 2: phase1_voltage"):
            load_config(write_config(config_dir, content))

    def test_duration_below_minimum(self, config_dir):
        content = """\
            port: /dev/ttyACM0
            output_channels:
              1:
                phase1_duration: 0.00001
        """
        with pytest.raises(ValidationError, match="phase1_duration"):
            load_config(write_config(config_dir, content))


# ══════════════════════════════════════════════════════════════════════════
#  Applying
# ══════════════════════════════════════════════════════════════════════════


class TestConfigureChannel:
    def test_success(self, device, fake_serial):
        ch = ChannelConfig(
            channel=OutputChannel.CHANNEL1,
            settings=(
                ParameterSetting(ParameterCode.BIPHASIC, True),
                ParameterSetting(ParameterCode.PHASE1_DURATION, 0.001),
            ),
        )
        result = configure_channel(device, ch)
        assert result.success is True
        assert "2 settings applied" in result.message
        assert fake_serial.written == [
            bytes([213, 74, 1, 1, 1]),
            bytes([213, 74, 4, 1, 20, 0, 0, 0]),
        ]

    def test_failure_returns_error_result(self, device, fake_serial):
        ch = ChannelConfig(
            channel=5,
            settings=(ParameterSetting(ParameterCode.BIPHASIC, True),),
        )
        result = configure_channel(device, ch)
        assert result.success is False
        assert "FAILED" in result.message
        assert fake_serial.written == []


class TestConfigureAll:
    def test_applies_client_id_then_channels(self, device, fake_serial, config_dir):
        config = load_config(write_config(config_dir, VALID_CONFIG))
        report = configure_all(device, config)
        assert report.all_ok
        assert report.summary == "3/3 channels OK"
        assert fake_serial.written == [
            bytes([213, 89]) + b"RIG-01",
            bytes([213, 74, 1, 1, 1]),
            bytes([213, 74, 2, 1, 0x00, 0xC0]),
            bytes([213, 74, 4, 1, 20, 0, 0, 0]),
            bytes([213, 74, 17, 3, 0x00, 0x80]),
            bytes([213, 74, 14, 3, 2]),
            bytes([213, 74, 15, 3, 1]),
            bytes([213, 74, 128, 1, 1]),
        ]

    def test_partial_failure(self, device, fake_serial):
        """If one channel fails, the report reflects it but others still run."""
        config = DeviceConfig(
            port="/dev/fake",
            output_channels=[
                ChannelConfig(5, (ParameterSetting(ParameterCode.BIPHASIC, True),)),
                ChannelConfig(
                    OutputChannel.CHANNEL2, (ParameterSetting(ParameterCode.BIPHASIC, True),)
                ),
            ],
        )
        report = configure_all(device, config)
        assert not report.all_ok
        assert report.summary == "1/2 channels FAILED"
        assert fake_serial.written == [bytes([213, 74, 1, 2, 1])]

    def test_requires_open_device(self, fake_serial, serial_factory):
        config = parse_config({"port": "/dev/fake", "output_channels": {1: {"biphasic": True}}})
        with pytest.raises(ConnectionError, match="must be open"):
            configure_all(PulsePal("/dev/fake"), config)
