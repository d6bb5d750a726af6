"""Command-line interface for Device Channels."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from typing import List, Optional

from . import COMMAND_TIMEOUT, DEFAULT_CHANNEL_TYPE
from .config import CHANNEL_TYPES, channel_config_from_mapping, settings_from_env
from .exceptions import DeviceChannelError
from .serial_comm import list_available_ports
from .ssh_channel import SSHChannel
from .target import Target
from .types import ChannelConfig

# Command-line option -> flat setting name
_OPTION_SETTINGS = {
    "channel": "channel_type",
    "host": "host",
    "port": "port",
    "user": "user",
    "password": "password",
    "key_path": "ssh_key_path",
    "timeout": "timeout",
    "serial": "serial_device",
    "baud_rate": "baud_rate",
    "serial_user": "serial_username",
    "serial_password": "serial_password",
    "login_prompt": "serial_login_prompt",
    "password_prompt": "serial_password_prompt",
    "shell_prompt": "serial_shell_prompt",
}


def build_config(args) -> ChannelConfig:
    """Merge command-line options over ``DEVICE_*`` environment variables."""
    settings = settings_from_env()
    settings.setdefault("channel_type", DEFAULT_CHANNEL_TYPE)
    for option, key in _OPTION_SETTINGS.items():
        value = getattr(args, option, None)
        if value is not None:
            settings[key] = value
    return channel_config_from_mapping(settings)


def create_target(args) -> Target:
    """Create the target for the configured channel."""
    target = Target.from_config(build_config(args))
    if isinstance(target.channel, SSHChannel):
        target.channel.show_progress = True
    return target


def command_execute(args) -> int:
    """Execute command on the device."""
    try:
        with create_target(args) as target:
            output = target.execute_command_with_timeout(args.remote_command, args.command_timeout)

            print(f"Return code: {output.exit_code}")
            if output.stdout:
                print(f"STDOUT:\n{output.stdout}")
            if output.stderr:
                print(f"STDERR:\n{output.stderr}", file=sys.stderr)

            return 0 if output.success else 1

    except DeviceChannelError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_upload(args) -> int:
    """Upload file to the device."""
    try:
        with create_target(args) as target:
            target.upload_file(args.local_path, args.remote_path)
            print(f"Uploaded {args.local_path} -> {args.remote_path}")
            return 0

    except DeviceChannelError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_download(args) -> int:
    """Download file from the device."""
    try:
        with create_target(args) as target:
            target.download_file(args.remote_path, args.local_path)
            print(f"Downloaded {args.remote_path} -> {args.local_path}")
            return 0

    except DeviceChannelError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_info(args) -> int:
    """Print basic system information."""
    try:
        with create_target(args) as target:
            info = target.get_system_info()
            for field in dataclasses.fields(info):
                value = getattr(info, field.name)
                if "\n" in value.strip():
                    print(f"{field.name}:")
                    for line in value.strip().splitlines():
                        print(f"  {line}")
                else:
                    print(f"{field.name}: {value}")
            return 0

    except DeviceChannelError as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


def command_ports(args) -> int:
    """List available serial ports."""
    ports = list_available_ports()
    if not ports:
        print("No serial ports found.")
    else:
        print("Available serial ports:")
        for p in ports:
            print(f"  {p}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="device-channel",
        description="Device Channels - run commands on embedded Linux devices over SSH or serial",
        epilog="Options not given on the command line are read from DEVICE_* environment variables.",
    )

    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Log to stderr (-v: info, -vv: debug)",
    )
    parser.add_argument(
        "--channel", choices=CHANNEL_TYPES, default=None,
        help=f"Channel type (default: $DEVICE_CHANNEL or {DEFAULT_CHANNEL_TYPE})",
    )
    parser.add_argument(
        "--timeout", type=int, default=None,
        help="Connection timeout in seconds (default: 30)",
    )

    # SSH
    ssh_group = parser.add_argument_group("SSH options")
    ssh_group.add_argument("--host", default=None, help="Device IP address or hostname")
    ssh_group.add_argument("--port", type=int, default=None, help="SSH port (default: 22)")
    ssh_group.add_argument("--user", default=None, help="SSH user (default: root)")
    ssh_group.add_argument("--password", default=None, help="SSH password")
    ssh_group.add_argument(
        "--key-path", default=None,
        help="Private key to use exclusively (default: try the usual key files)",
    )

    # Serial
    serial_group = parser.add_argument_group("serial options")
    serial_group.add_argument(
        "--serial", default=None,
        help="Serial port path (e.g. /dev/ttyUSB0 or COM3)",
    )
    serial_group.add_argument(
        "--baud-rate", type=int, default=None,
        help="Baud rate (default: 115200)",
    )
    serial_group.add_argument("--serial-user", default=None, help="Console login user")
    serial_group.add_argument("--serial-password", default=None, help="Console login password")
    serial_group.add_argument("--login-prompt", default=None, help="Login prompt text, e.g. 'login:'")
    serial_group.add_argument("--password-prompt", default=None, help="Password prompt text, e.g. 'Password:'")
    serial_group.add_argument("--shell-prompt", default=None, help="Shell prompt text, e.g. '# '")

    # Subcommands
    subparsers = parser.add_subparsers(dest="subcommand", required=True)

    # Execute command
    exec_parser = subparsers.add_parser("exec", help="Execute command")
    exec_parser.add_argument("remote_command", metavar="COMMAND", help="Command to execute")
    exec_parser.add_argument(
        "--command-timeout", type=float, default=COMMAND_TIMEOUT,
        help=f"Command timeout in seconds (default: {COMMAND_TIMEOUT:g})",
    )
    exec_parser.set_defaults(func=command_execute)

    # Upload file
    upload_parser = subparsers.add_parser("upload", help="Upload file (SSH only)")
    upload_parser.add_argument("local_path", help="Local file path")
    upload_parser.add_argument("remote_path", help="Remote destination path")
    upload_parser.set_defaults(func=command_upload)

    # Download file
    download_parser = subparsers.add_parser("download", help="Download file (SSH only)")
    download_parser.add_argument("remote_path", help="Remote file path")
    download_parser.add_argument("local_path", help="Local destination path")
    download_parser.set_defaults(func=command_download)

    # System information
    info_parser = subparsers.add_parser("info", help="Show system information")
    info_parser.set_defaults(func=command_info)

    # Serial port listing
    ports_parser = subparsers.add_parser("ports", help="List available serial ports")
    ports_parser.set_defaults(func=command_ports)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose > 1 else logging.INFO,
            format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        )
        logging.getLogger("paramiko").setLevel(logging.WARNING)

    try:
        return args.func(args)
    except DeviceChannelError as e:
        # Configuration errors surface before any connection is made
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
