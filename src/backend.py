# --- START OF FILE src/backend.py ---
"""
Backend Launcher & Handshake.

The backend is started with the user's arguments followed by a fixed flag
set: quiet, socket path, optional log path, daemon. In daemon mode the
backend forks, prints exactly "<pid> <block_size>" on stdout and its launcher
exits 0. Anything else is a launch failure.
"""

import os
import select
import shlex
import signal
import subprocess
from typing import Dict, List, Optional, Sequence

import config_manager
import constants
from debug_logging import log_debug, log_info, log_warning
from errors import LaunchFailed
from models import Handshake, Session


def build_backend_command(executable: str, args: Sequence[str], session: Session,
                          flags: Optional[Dict[str, str]] = None) -> List[str]:
    """
    Build the command array that starts the backend for `session`.

    Args:
        executable: Backend program
        args: The user's own backend arguments
        session: Provisioned session (socket and log paths)
        flags: Flag spellings (keys quiet/socket/log/daemon); default from config
    """
    if flags is None:
        flags = config_manager.get_setting("backend_flags", constants.DEFAULT_BACKEND_FLAGS)
    cmd = [executable] + list(args)
    cmd += [flags["quiet"], flags["socket"], session.socket_path]
    if session.log_path:
        cmd += [flags["log"], session.log_path]
    cmd.append(flags["daemon"])
    return cmd


def parse_handshake(output: str) -> Handshake:
    """
    Parse the backend's startup acknowledgment "<pid> <block_size>".

    Raises:
        LaunchFailed: Unless the output is exactly two positive integers
    """
    tokens = output.split()
    if len(tokens) != 2:
        raise LaunchFailed("Malformed backend handshake", details=f"expected '<pid> <block_size>', got {output.strip()!r}")
    try:
        pid, block_size = int(tokens[0]), int(tokens[1])
    except ValueError:
        raise LaunchFailed("Malformed backend handshake", details=f"non-numeric output {output.strip()!r}") from None
    if pid <= 0 or block_size <= 0:
        raise LaunchFailed("Malformed backend handshake", details=f"invalid values {output.strip()!r}")
    return Handshake(pid=pid, block_size=block_size)


def _recover_pid(first_line: str, stream) -> Optional[int]:
    """
    Find the daemon pid in whatever the launcher printed before an interrupt.

    Output still sitting in the pipe is read without blocking. Output lost
    inside an interrupted readline() cannot be recovered; in that case the
    backend is left running and a warning is logged.
    """
    text = first_line
    if not text:
        try:
            ready, _, _ = select.select([stream], [], [], 0)
            if ready:
                text = os.read(stream.fileno(), 4096).decode('utf-8', errors='replace')
        except (OSError, ValueError):
            return None
    lines = text.splitlines()
    if not lines:
        return None
    try:
        return parse_handshake(lines[0]).pid
    except LaunchFailed:
        return None


def _stop_orphan(first_line: str, stream) -> None:
    pid = _recover_pid(first_line, stream)
    if pid is None:
        log_warning("BACKEND", "Interrupted before the handshake; a forked backend may still be running")
        return
    log_warning("BACKEND", f"Interrupted during start-up, stopping backend (PID: {pid})")
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        pass
    except PermissionError as e:
        log_warning("BACKEND", f"Cannot signal backend (PID: {pid}): {e}")


def launch_backend(executable: str, args: Sequence[str], session: Session,
                   flags: Optional[Dict[str, str]] = None) -> Handshake:
    """
    Start the backend and capture its handshake.

    The first stdout line is read and then the launcher is waited for; the
    daemonized backend may keep its copy of the pipe open, so stdout is not
    read to EOF.

    Returns:
        Handshake with backend pid and negotiated block size

    Raises:
        LaunchFailed: If the backend cannot be executed, exits non-zero, or
                      prints a malformed handshake
    """
    cmd = build_backend_command(executable, args, session, flags)
    log_info("BACKEND", f"Starting backend: {shlex.join(cmd)}")

    # Quiet means silence: the backend's diagnostics go only to its log, if any
    stderr_arg = subprocess.DEVNULL if session.quiet else None

    try:
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=stderr_arg,
        )
    except OSError as e:
        raise LaunchFailed(f"Could not execute backend {executable}", details=str(e)) from e

    first_line = ""
    try:
        first_line = process.stdout.readline().decode('utf-8', errors='replace')
        returncode = process.wait()
    except BaseException:
        # Interrupted before the handshake reached the session: stop the launcher and any forked backend here
        process.kill()
        process.wait()
        _stop_orphan(first_line, process.stdout)
        raise
    finally:
        process.stdout.close()

    log_debug("BACKEND", f"Launcher exited with {returncode}, output: {first_line.strip()!r}")
    if returncode != 0:
        raise LaunchFailed(f"Backend failed to start (exit code {returncode})",
                           details=first_line.strip() or None)

    handshake = parse_handshake(first_line)
    log_info("BACKEND", f"Backend running (PID: {handshake.pid}, block size: {handshake.block_size})")
    return handshake

# --- END OF FILE src/backend.py ---
