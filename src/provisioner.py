# --- START OF FILE provisioner.py ---
"""
Resource Provisioner: create or validate the three ephemeral artifacts of a
session (teardown script, log destination, rendezvous socket) and undo them
again on failure.

Every artifact becomes a ResourceHandle on the Session in acquisition order.
Only handles with created_by_session=True are ever deleted; paths supplied by
the caller that existed beforehand are left alone.
"""

import os
from typing import List, Optional

import constants
import paths
import utils
from debug_logging import log_debug, log_warning
from errors import ResourceAccessError, UserAborted
from models import ResourceHandle, Session, SessionMode
from readiness import check_socket_in_use


def rollback(handles: List[ResourceHandle]) -> List[str]:
    """
    Delete the files of session-created handles in reverse acquisition order.

    Returns:
        Paths that were actually removed. Errors are logged, never raised,
        so one undeletable file does not keep the others around.
    """
    removed = []
    for handle in reversed(handles):
        if not handle.created_by_session:
            continue
        try:
            if utils.remove_file(handle.path):
                removed.append(handle.path)
                log_debug("PROVISION", f"Removed {handle.kind} {handle.path}")
        except OSError as e:
            log_warning("PROVISION", f"Could not remove {handle.kind} {handle.path}: {e}")
    return removed


def _confirm_overwrite(path: str, assume_yes) -> None:
    if not utils.confirm(f"Overwrite {path}?", assume_yes):
        raise UserAborted(f"Not overwriting existing file {path}")


def _check_writable(path: str, kind: str) -> None:
    if not utils.is_writable_target(path):
        raise ResourceAccessError(f"Cannot write {kind} file {path}")


def provision(device: str,
              explicit_log: Optional[str] = None,
              explicit_sock: Optional[str] = None,
              explicit_kill: Optional[str] = None,
              daemon_mode: bool = False,
              quiet: bool = False,
              assume_yes=None,
              runtime_dir: Optional[str] = None) -> Session:
    """
    Decide and create the session's ephemeral files.

    Args:
        device: Device node selected by discovery (names the default files)
        explicit_log: Caller-supplied log path (-l)
        explicit_sock: Caller-supplied socket path (-u)
        explicit_kill: Caller-supplied teardown script path (-k)
        daemon_mode: True when the orchestrator detaches after binding
        quiet: Suppress the backend's error stream when attached
        assume_yes: Force the answer to overwrite prompts (None = ask on a TTY,
                    yes otherwise)
        runtime_dir: Directory for private temporary files (default: user runtime dir)

    Returns:
        Session with one handle per artifact, all marked owned

    Raises:
        UserAborted: An overwrite was declined
        ResourceAccessError: A path is not writable or could not be created
    """
    tag = os.path.basename(device)

    # --- Phase 1: decide and validate, nothing is created yet ---
    if explicit_kill:
        teardown_path = os.path.abspath(explicit_kill)
    elif daemon_mode:
        teardown_path = paths.default_teardown_path(device)
    else:
        teardown_path = None  # private temp file, created below

    if teardown_path:
        _check_writable(teardown_path, "teardown")
        if os.path.lexists(teardown_path):
            _confirm_overwrite(teardown_path, assume_yes)

    log_path = os.path.abspath(explicit_log) if explicit_log else None
    if log_path:
        _check_writable(log_path, "log")

    socket_path = os.path.abspath(explicit_sock) if explicit_sock else None
    if socket_path:
        _check_writable(socket_path, "socket")
        if os.path.lexists(socket_path):
            if check_socket_in_use(socket_path):
                raise ResourceAccessError(f"Something is already listening on socket {socket_path}")
            _confirm_overwrite(socket_path, assume_yes)

    # --- Phase 2: create, rolling back on any failure ---
    handles: List[ResourceHandle] = []
    try:
        if teardown_path is None:
            teardown_path = paths.make_private_temp_file(tag, constants.TEARDOWN_SUFFIX, runtime_dir)
        else:
            # Reserve the path now; the script body is written once the backend pid is known
            with open(teardown_path, 'w'):
                pass
            os.chmod(teardown_path, constants.PRIVATE_FILE_MODE)
        handles.append(ResourceHandle("teardown", teardown_path, owned=True, created_by_session=True))

        if log_path:
            existed = os.path.exists(log_path)
            with open(log_path, 'a'):
                pass
            handles.append(ResourceHandle("log", log_path, owned=True, created_by_session=not existed))
        elif daemon_mode:
            log_path = paths.make_private_temp_file(tag, constants.LOG_SUFFIX, runtime_dir)
            handles.append(ResourceHandle("log", log_path, owned=True, created_by_session=True))

        if socket_path is None:
            socket_path = paths.make_private_temp_file(tag, constants.SOCKET_SUFFIX, runtime_dir)
        handles.append(ResourceHandle("socket", socket_path, owned=True, created_by_session=True))
    except BaseException as e:
        rollback(handles)
        if isinstance(e, OSError):
            raise ResourceAccessError("Could not create session files", details=str(e)) from e
        raise

    session = Session(
        device=device,
        socket_path=socket_path,
        teardown_path=teardown_path,
        log_path=log_path,
        mode=SessionMode.DAEMON if daemon_mode else SessionMode.FOREGROUND,
        quiet=quiet,
        handles=handles,
    )
    log_debug("PROVISION", f"Session files: teardown={teardown_path} log={log_path} socket={socket_path}")
    return session

# --- END OF FILE provisioner.py ---
