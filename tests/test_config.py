"""
Configuration loading test suite: flat settings and ``DEVICE_*``
environment variables to channel configurations.

Run with full visibility:
    pytest tests/test_config.py -v -s
"""

from __future__ import annotations

import pytest

from device_channels.config import (
    CHANNEL_TYPES,
    channel_config_from_env,
    channel_config_from_mapping,
    settings_from_env,
)
from device_channels.exceptions import ChannelConfigError, DeviceChannelError
from device_channels.types import SerialChannelConfig, SSHChannelConfig


def _report(label: str, detail: str = "") -> None:
    """Uniform test-level print."""
    if detail:
        print(f"  [{label}] {detail}")
    else:
        print(f"  [{label}]")


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS: flat settings
# ═══════════════════════════════════════════════════════════════════════════

class TestMappingToConfig:

    def test_channel_types(self) -> None:
        assert CHANNEL_TYPES == ("ssh", "serial")

    def test_ssh_defaults(self) -> None:
        config = channel_config_from_mapping({})
        _report("RESULT", repr(config))
        assert config == SSHChannelConfig(
            host="localhost", port=22, user="root", password="", key_path=None,
            timeout=30, multiplex=False,
        )

    def test_ssh_settings(self) -> None:
        config = channel_config_from_mapping({
            "channel_type": "SSH",
            "host": "192.168.1.100",
            "port": "2222",
            "user": "fio",
            "password": "fio",
            "ssh_key_path": "/keys/device",
            "timeout": "10",
            "ssh_multiplex": "yes",
        })
        assert isinstance(config, SSHChannelConfig)
        assert config.host == "192.168.1.100"
        assert config.port == 2222
        assert config.user == "fio"
        assert config.password == "fio"
        assert config.key_path == "/keys/device"
        assert config.timeout == 10
        assert config.multiplex is True

    def test_empty_key_path_means_default_keys(self) -> None:
        config = channel_config_from_mapping({"ssh_key_path": ""})
        assert config.key_path is None

    @pytest.mark.parametrize("value, expected", [
        (True, True), ("1", True), ("on", True), ("false", False), ("0", False), (False, False),
    ])
    def test_multiplex_flag(self, value, expected: bool) -> None:
        config = channel_config_from_mapping({"ssh_multiplex": value})
        assert config.multiplex is expected

    def test_serial_settings(self) -> None:
        config = channel_config_from_mapping({
            "channel_type": "serial",
            "serial_device": "/dev/ttyUSB0",
            "baud_rate": 9600,
            "serial_username": "root",
            "serial_password": "secret",
            "serial_login_prompt": "login:",
            "serial_password_prompt": "Password:",
            "serial_shell_prompt": "# ",
        })
        assert config == SerialChannelConfig(
            device="/dev/ttyUSB0",
            baud_rate=9600,
            timeout=30,
            login_prompt="login:",
            password_prompt="Password:",
            shell_prompt="# ",
            username="root",
            password="secret",
        )

    def test_serial_defaults(self) -> None:
        config = channel_config_from_mapping({"channel_type": "serial", "serial_device": "COM3"})
        assert isinstance(config, SerialChannelConfig)
        assert config.baud_rate == 115200
        assert config.username is None
        assert config.shell_prompt is None

    def test_serial_requires_device(self) -> None:
        with pytest.raises(ChannelConfigError) as exc_info:
            channel_config_from_mapping({"channel_type": "serial"})
        _report("CAUGHT", str(exc_info.value))
        assert "Serial device path is required" in str(exc_info.value)

    def test_unknown_channel_type(self) -> None:
        with pytest.raises(ChannelConfigError) as exc_info:
            channel_config_from_mapping({"channel_type": "telnet"})
        assert "telnet" in str(exc_info.value)
        assert isinstance(exc_info.value, DeviceChannelError)

    @pytest.mark.parametrize("settings", [
        {"port": "twenty-two"},
        {"timeout": "soon"},
        {"channel_type": "serial", "serial_device": "/dev/ttyS0", "baud_rate": "fast"},
    ])
    def test_unconvertible_values(self, settings: dict) -> None:
        with pytest.raises(ChannelConfigError) as exc_info:
            channel_config_from_mapping(settings)
        _report("CAUGHT", str(exc_info.value))
        assert "Invalid value" in str(exc_info.value)

    @pytest.mark.parametrize("settings", [
        {"port": "70000"},
        {"timeout": "0"},
        {"channel_type": "serial", "serial_device": "/dev/ttyS0", "baud_rate": "-9600"},
    ])
    def test_out_of_range_values(self, settings: dict) -> None:
        with pytest.raises(ChannelConfigError):
            channel_config_from_mapping(settings)


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS: environment
# ═══════════════════════════════════════════════════════════════════════════

class TestEnvironment:

    def test_settings_from_env_picks_prefixed_names(self) -> None:
        environ = {
            "DEVICE_HOST": "10.0.0.5",
            "DEVICE_KEY_PATH": "/keys/dev",
            "DEVICE_SERIAL_USER": "root",
            "HOST": "ignored",
            "DEVICE_UNKNOWN": "ignored",
        }
        assert settings_from_env(environ) == {
            "host": "10.0.0.5",
            "ssh_key_path": "/keys/dev",
            "serial_username": "root",
        }

    def test_ssh_from_env(self) -> None:
        config = channel_config_from_env({
            "DEVICE_HOST": "10.0.0.5",
            "DEVICE_PORT": "2200",
            "DEVICE_USER": "admin",
            "DEVICE_PASSWORD": "pw",
        })
        assert config == SSHChannelConfig(host="10.0.0.5", port=2200, user="admin", password="pw")

    def test_serial_from_env(self) -> None:
        config = channel_config_from_env({
            "DEVICE_CHANNEL": "serial",
            "DEVICE_SERIAL": "/dev/ttyACM0",
            "DEVICE_BAUD_RATE": "57600",
            "DEVICE_SHELL_PROMPT": "$ ",
        })
        assert isinstance(config, SerialChannelConfig)
        assert config.device == "/dev/ttyACM0"
        assert config.baud_rate == 57600
        assert config.shell_prompt == "$ "

    def test_custom_prefix(self) -> None:
        config = channel_config_from_env({"DUT_HOST": "dut.local"}, prefix="DUT_")
        assert config.host == "dut.local"

    def test_process_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("DEVICE_HOST", "from-env.local")
        monkeypatch.delenv("DEVICE_CHANNEL", raising=False)
        config = channel_config_from_env()
        assert isinstance(config, SSHChannelConfig)
        assert config.host == "from-env.local"
