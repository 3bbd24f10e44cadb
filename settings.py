"""
WSL Fleet Dashboard — runtime settings
Every value can be overridden from the environment; the CLI overrides again.
"""

import os
import shlex

DEFAULT_CONTROL_CMD = ["powershell", "-ExecutionPolicy", "Bypass", "-File", "..\\wsl_tools.ps1"]

_control_cmd = os.getenv("FLEET_CONTROL_CMD", "")
CONTROL_CMD = shlex.split(_control_cmd, posix=os.name != "nt") if _control_cmd else DEFAULT_CONTROL_CMD

POLL_INTERVAL   = float(os.getenv("FLEET_POLL_INTERVAL", "3"))
ACTION_COOLDOWN = float(os.getenv("FLEET_ACTION_COOLDOWN", "5"))
REFRESH_DELAY   = float(os.getenv("FLEET_REFRESH_DELAY", "1"))
GRACE_PERIOD    = float(os.getenv("FLEET_GRACE_PERIOD", "120"))
RECONNECT_DELAY = float(os.getenv("FLEET_RECONNECT_DELAY", "2"))

# Action journal is off unless a redis host is given
REDIS_HOST = os.getenv("FLEET_REDIS_HOST", "")
REDIS_PORT = int(os.getenv("FLEET_REDIS_PORT", "6379"))

HOST = os.getenv("FLEET_HOST", "127.0.0.1")
PORT = int(os.getenv("FLEET_PORT", "0"))
PORT_FILE = os.getenv("FLEET_PORT_FILE", ".port")
