"""
Readiness Waiter and socket helpers.

The backend reports its handshake as soon as it has daemonized, which may be
before its listening socket exists. Binding has to wait for the socket.

The socket of a launched backend is never connected to: the backend serves
exactly the one client that connects, and that client must be nbd-client.
Only pre-existing sockets are probed, to tell stale files from live servers.
"""

import os
import socket
import time
from typing import Optional

import constants
import utils
from debug_logging import log_debug, log_info
from errors import LaunchFailed, ResourceAccessError, ReadyTimeout


def process_exists(pid: int) -> bool:
    """True if a live process with `pid` exists (it may belong to another user)."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    # An exited process nobody has reaped yet still answers signal 0
    try:
        with open(f"/proc/{pid}/stat", 'r') as f:
            state = f.read().rsplit(')', 1)[1].split()[0]
        return state != 'Z'
    except (OSError, IndexError):
        return True


def check_socket_in_use(socket_path: str) -> bool:
    """
    Check if a Unix socket is currently in use (a server listening).

    Args:
        socket_path: Path to Unix domain socket file

    Returns:
        True if socket exists and something is listening, False otherwise
    """
    if not utils.is_socket(socket_path):
        return False

    test_sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        test_sock.connect(socket_path)
        return True
    except (ConnectionRefusedError, FileNotFoundError):
        return False  # Socket file exists but not listening (stale)
    except OSError:
        return False
    finally:
        test_sock.close()


def check_and_remove_stale_socket(socket_path: str) -> bool:
    """
    Remove a leftover socket (or placeholder file) before the backend binds it.

    Returns:
        True if a file was removed, False if nothing existed

    Raises:
        ResourceAccessError: If a server is listening on the socket, or the
                             file cannot be removed
    """
    if not os.path.lexists(socket_path):
        return False

    if check_socket_in_use(socket_path):
        raise ResourceAccessError(f"Something is already listening on socket {socket_path}")

    try:
        os.unlink(socket_path)
    except OSError as e:
        raise ResourceAccessError(f"Could not remove stale socket {socket_path}", details=str(e)) from e
    log_debug("READY", f"Removed stale socket at {socket_path}")
    return True


def await_ready(socket_path: str,
                backend_pid: Optional[int] = None,
                timeout: Optional[float] = constants.DEFAULT_READY_TIMEOUT,
                poll_interval: float = constants.POLL_INTERVAL) -> None:
    """
    Block until the backend's socket exists.

    Polls with exponential backoff bounded by READY_MAX_BACKOFF. There is no
    timeout unless one is configured.

    Args:
        socket_path: Path the backend was told to listen on
        backend_pid: Backend pid; if the process goes away the wait fails
        timeout: Seconds to wait, or None to wait forever
        poll_interval: First poll interval in seconds

    Raises:
        LaunchFailed: If the backend process exits before the socket appears
        ReadyTimeout: If a timeout is set and expires
    """
    log_info("READY", f"Waiting for backend socket {socket_path}...")
    start_time = time.monotonic()
    interval = poll_interval

    while True:
        if utils.is_socket(socket_path):
            log_debug("READY", f"Socket {socket_path} is ready")
            return

        if backend_pid is not None and not process_exists(backend_pid):
            raise LaunchFailed(f"Backend (PID {backend_pid}) exited before creating {socket_path}")

        if timeout is not None and time.monotonic() - start_time >= timeout:
            raise ReadyTimeout(f"Backend socket {socket_path} did not appear within {timeout} seconds")

        time.sleep(interval)
        interval = min(interval * 2, constants.READY_MAX_BACKOFF)
