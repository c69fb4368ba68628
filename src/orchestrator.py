# --- START OF FILE orchestrator.py ---
"""
Session lifecycle orchestration.

    privilege → module → client → device → provision → launch/handshake
      → teardown script → wait for socket → bind → run

Once provisioning has created files, any failure (including Ctrl+C) rolls
back what the session created. Once the backend pid is known the session is
armed and rollback also terminates the backend.
"""

from dataclasses import dataclass, field
from typing import List, Optional, TextIO

import config_manager
import constants
from backend import launch_backend
from debug_logging import log_info, log_warning
from device_discovery import discover_device
from errors import ResourceAccessError
from kernel_module import ensure_module_loaded
from models import Session
from nbd_client import NbdClient, locate_client
from privilege import Capability, ensure_privilege
from provisioner import provision, rollback
from readiness import await_ready, check_and_remove_stale_socket
from session_runner import SessionRunner
from teardown import build_plan, emit_teardown, run_plan


@dataclass
class AttachOptions:
    backend: str
    backend_args: List[str] = field(default_factory=list)
    foreground: bool = False
    quiet: bool = False
    log_path: Optional[str] = None
    device: Optional[str] = None
    kill_script: Optional[str] = None
    socket_path: Optional[str] = None
    ready_timeout: Optional[float] = None
    assume_yes: Optional[bool] = None


def rollback_session(session: Session, client: Optional[NbdClient], bound: bool = False) -> None:
    """Undo a session that did not make it to (or through) RUNNING."""
    if session.armed:
        log_warning("MAIN", f"Rolling back session on {session.device} (backend PID: {session.backend_pid})")
        run_plan(build_plan(session, bound=bound), client)
    else:
        log_warning("MAIN", f"Rolling back session files for {session.device}")
        rollback(session.handles)


def bring_up(session: Session, options: AttachOptions, client: NbdClient, capability: Capability) -> None:
    """Launch the backend, arm the session, wait for readiness and bind the device."""
    check_and_remove_stale_socket(session.socket_path)

    session.handshake = launch_backend(options.backend, options.backend_args, session)
    try:
        emit_teardown(session, client.executable, capability.tool)
    except OSError as e:
        raise ResourceAccessError(f"Could not write teardown script {session.teardown_path}", details=str(e)) from e

    timeout = options.ready_timeout
    if timeout is None:
        timeout = config_manager.get_float_setting("ready_timeout")
    poll_interval = config_manager.get_float_setting("poll_interval", constants.POLL_INTERVAL)
    await_ready(session.socket_path, session.backend_pid, timeout, poll_interval)

    client.attach(session.device, session.socket_path, session.block_size)
    log_info("MAIN", f"Bound {session.device} to {session.socket_path} (block size {session.block_size})")


def attach(options: AttachOptions, out: Optional[TextIO] = None) -> int:
    """
    Run one complete session.

    Returns:
        Process exit code (0 on success)

    Raises:
        NbdAttachError subclasses for every failure; resources are already
        rolled back when they propagate.
    """
    capability = ensure_privilege()
    ensure_module_loaded(capability)
    client = NbdClient(locate_client(capability), capability)
    device = discover_device(options.device, client)

    session = provision(
        device,
        explicit_log=options.log_path,
        explicit_sock=options.socket_path,
        explicit_kill=options.kill_script,
        daemon_mode=not options.foreground,
        quiet=options.quiet,
        assume_yes=options.assume_yes,
    )

    bound = False
    try:
        bring_up(session, options, client, capability)
        bound = True
        runner = SessionRunner(session, lambda s: run_plan(build_plan(s), client))
        if session.is_daemon:
            return runner.run_daemon(out)
        return runner.run_foreground()
    except BaseException:
        rollback_session(session, client, bound=bound)
        raise

# --- END OF FILE orchestrator.py ---
