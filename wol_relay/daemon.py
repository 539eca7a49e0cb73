"""Run modes, daemonization and PID file handling."""

import logging
import os
import sys
from enum import Enum
from pathlib import Path
from typing import Optional

from .relay_engine import StartupError


logger = logging.getLogger(__name__)


class RunMode(Enum):
    """How the relay process was started."""
    FOREGROUND = "foreground"    # Attached to a terminal, logs to stdout
    DAEMON = "daemon"            # Detached, logs to syslog, writes a PID file


def write_pid_file(path: str, pid: Optional[int] = None) -> None:
    """Write the decimal process id followed by a newline."""
    if pid is None:
        pid = os.getpid()
    try:
        with open(path, 'w', encoding='utf-8') as f:
            f.write(f"{pid}\n")
    except OSError as e:
        raise StartupError("Can't create pidfile", e) from e


def remove_pid_file(path: Optional[str]) -> None:
    if not path:
        return
    try:
        Path(path).unlink()
        logger.debug(f"Removed PID file {path}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove PID file {path}: {e}")


def daemonize(pid_file: str) -> None:
    """
    Detach from the controlling terminal.

    The parent process exits immediately; the child becomes a session leader,
    moves to the filesystem root, clears the file creation mask and records
    its PID. Must be called before any event loop is created.

    Args:
        pid_file: Absolute path of the PID file
    """
    if os.fork() != 0:
        os._exit(0)

    try:
        os.setsid()
    except OSError as e:
        print(f"wolrelay can't be new leader of new session: {e}", file=sys.stderr)
        os._exit(0)

    os.chdir("/")
    os.umask(0)

    # Detach standard streams from the terminal
    devnull = os.open(os.devnull, os.O_RDWR)
    for fd in (0, 1, 2):
        os.dup2(devnull, fd)
    if devnull > 2:
        os.close(devnull)

    write_pid_file(pid_file)
