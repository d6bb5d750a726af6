"""
Device Channels - uniform command execution on embedded Linux targets

This package provides one primitive to the compliance checks that run
against an embedded device: "run this shell command on the target and get
back its output".  It offers:

- **SSH channel** with key/password authentication fallback, separate
  stdout/stderr/exit-code and SCP file copy
- **Serial channel** with login automation and command-output extraction
  from the raw console stream (echo and prompt handling)
- **Windows serial channel** running the same state machine over a
  blocking, lock-guarded port handle
- **Target** convenience wrapper (file checks, system information)

The concrete transport is selected from a ``ChannelConfig`` by
``create_channel``; callers only ever hold a ``CommunicationChannel``.
"""

import logging
import os

logging.getLogger("device_channels").addHandler(logging.NullHandler())

__version__ = "0.1.0"

# SSH port
SSH_PORT = 22

# Timeout settings (seconds)
CONNECTION_TIMEOUT = 30
COMMAND_TIMEOUT = 30.0
SSH_POLL_INTERVAL_S = 0.01  # sleep between empty polls of an exec channel

# File transfer settings
CHUNK_SIZE = 8192
SCP_FILE_MODE = "0644"

# SSH keys tried, in order, when no explicit key path is configured.
# Relative entries are resolved against the working directory, the rest
# against the user's home directory.
SSH_LOCAL_KEY_FILES = ["test_device_key"]
SSH_HOME_KEY_FILES = [
    ".ssh/test_device_key",
    ".ssh/id_ed25519",
    ".ssh/id_rsa",
    ".ssh/id_ecdsa",
    ".ssh/id_dsa",
]

# Serial communication settings
SERIAL_BAUD_RATE = 115200
SERIAL_BYTESIZE = 8       # 8 data bits
SERIAL_PARITY = "N"       # No parity
SERIAL_STOPBITS = 1       # 1 stop bit
SERIAL_READ_TIMEOUT = 0   # seconds, non-blocking; the poll loop owns the timing
SERIAL_BLOCKING_READ_TIMEOUT = 0.05  # seconds, per read on the blocking (Windows) handle
SERIAL_WRITE_TIMEOUT = 10  # seconds
SERIAL_POLL_INTERVAL_S = 0.1  # sleep between empty reads while waiting for output
SERIAL_READ_CHUNK = 1024
SERIAL_DEFAULT_SHELL_PROMPT = "$ "

# Login automation timings (seconds)
SERIAL_INTERRUPT_PAUSE_S = 0.1      # after Ctrl-C
SERIAL_WAKEUP_PAUSE_S = 0.5         # after each wake-up line ending
SERIAL_POST_WAKEUP_PAUSE_S = 0.5    # after the whole wake-up burst
SERIAL_SHELL_CHECK_TIMEOUT_S = 3.0  # "already logged in?" probe
SERIAL_LOGIN_PROMPT_TIMEOUT_S = 5.0
SERIAL_PASSWORD_PROMPT_TIMEOUT_S = 10.0
SERIAL_SHELL_PROMPT_TIMEOUT_S = 10.0
SERIAL_SETTLE_S = 2.0               # when no shell prompt is configured

# Environment variables consulted by ``config.channel_config_from_env``.
# Credentials are only ever read from the environment.
ENV_PREFIX = "DEVICE_"
DEFAULT_CHANNEL_TYPE = os.environ.get("DEVICE_CHANNEL", "ssh")
