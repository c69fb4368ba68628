# --- START OF FILE teardown.py ---
"""
Teardown plans.

A session is undone by a short, closed list of steps:

    detach <device>       unbind the nbd device
    terminate <pid>       send SIGTERM to the backend
    wait <pid>            wait until the backend is gone
    remove <path>         delete an ephemeral file
    self-remove <path>    delete the teardown script itself (always last)

The same list is interpreted two ways: run_plan() executes it in-process
(foreground sessions and rollback), render_script() turns it into the POSIX
shell script a detached session leaves behind. Both tolerate steps whose
target is already gone, so running a plan twice is harmless.
"""

import json
import os
import shlex
import signal
import time
from dataclasses import dataclass
from typing import List, Optional, Union

import constants
import utils
from debug_logging import log_debug, log_info, log_warning
from models import Session
from nbd_client import NbdClient, run_command
from readiness import process_exists
from version import __app_name__, __version__

DETACH = "detach"
TERMINATE = "terminate"
WAIT = "wait"
REMOVE = "remove"
SELF_REMOVE = "self-remove"
ACTIONS = (DETACH, TERMINATE, WAIT, REMOVE, SELF_REMOVE)

PLAN_MARKER = "# plan: "


@dataclass(frozen=True)
class TeardownStep:
    action: str
    target: Union[str, int]

    def __post_init__(self):
        if self.action not in ACTIONS:
            raise ValueError(f"Unknown teardown action: {self.action}")
        if self.action in (TERMINATE, WAIT) and not isinstance(self.target, int):
            raise ValueError(f"{self.action} needs a pid, got {self.target!r}")

    def to_dict(self) -> dict:
        return {"action": self.action, "target": self.target}

    @classmethod
    def from_dict(cls, data: dict) -> "TeardownStep":
        return cls(data["action"], data["target"])


def build_plan(session: Session, bound: bool = True) -> List[TeardownStep]:
    """
    Steps that undo everything `session` created.

    Args:
        session: An armed session (backend pid known)
        bound: False when the device was never bound (rollback after a
               failed wait or bind), which drops the detach step

    File removals run in reverse acquisition order: socket, log, script.
    """
    steps = []
    if bound:
        steps.append(TeardownStep(DETACH, session.device))
    if session.backend_pid is not None:
        steps.append(TeardownStep(TERMINATE, session.backend_pid))
        steps.append(TeardownStep(WAIT, session.backend_pid))
    steps.append(TeardownStep(REMOVE, session.socket_path))
    if session.log_path and session.owns_log():
        steps.append(TeardownStep(REMOVE, session.log_path))
    steps.append(TeardownStep(SELF_REMOVE, session.teardown_path))
    return steps


# --- In-process interpreter ---

def _terminate(pid: int, client: Optional[NbdClient] = None) -> None:
    try:
        os.kill(pid, signal.SIGTERM)
        log_debug("TEARDOWN", f"Sent SIGTERM to backend (PID: {pid})")
    except ProcessLookupError:
        log_debug("TEARDOWN", f"Backend (PID: {pid}) already exited")
    except PermissionError as e:
        if client is None or client.capability.is_root:
            log_warning("TEARDOWN", f"Cannot signal backend (PID: {pid}): {e}")
            return
        returncode, _, stderr = run_command(client.capability.wrap(["kill", "-TERM", str(pid)]))
        if returncode != 0:
            log_warning("TEARDOWN", f"Cannot signal backend (PID: {pid}): {stderr.strip()}")


def _wait_for_exit(pid: int, timeout: Optional[float] = None) -> bool:
    """Wait until `pid` is gone. Returns False only if `timeout` expired."""
    start_time = time.monotonic()
    while True:
        try:
            # Reap it if it happens to be our child, otherwise it stays a zombie forever
            os.waitpid(pid, os.WNOHANG)
        except ChildProcessError:
            pass
        if not process_exists(pid):
            return True
        if timeout is not None and time.monotonic() - start_time >= timeout:
            log_warning("TEARDOWN", f"Backend (PID: {pid}) still running after {timeout} seconds")
            return False
        time.sleep(constants.PROCESS_EXIT_POLL)


def run_plan(steps: List[TeardownStep], client: Optional[NbdClient] = None,
             wait_timeout: Optional[float] = None) -> None:
    """
    Execute a teardown plan in-process.

    Failures of individual steps are logged and the remaining steps still
    run, mirroring the `|| true` of the generated script.
    """
    for step in steps:
        if step.action == DETACH:
            if client is None:
                log_warning("TEARDOWN", f"No nbd-client available, cannot detach {step.target}")
            else:
                client.detach(step.target)
        elif step.action == TERMINATE:
            _terminate(step.target, client)
        elif step.action == WAIT:
            _wait_for_exit(step.target, wait_timeout)
        elif step.action in (REMOVE, SELF_REMOVE):
            try:
                if utils.remove_file(step.target):
                    log_debug("TEARDOWN", f"Removed {step.target}")
            except OSError as e:
                log_warning("TEARDOWN", f"Could not remove {step.target}: {e}")


# --- Script renderer ---

def _render_step(step: TeardownStep, client_executable: str) -> str:
    target = shlex.quote(str(step.target))
    if step.action == DETACH:
        return f"{shlex.quote(client_executable)} -d {target} >/dev/null 2>&1 || true"
    if step.action == TERMINATE:
        return f"kill -TERM {step.target} 2>/dev/null || true"
    if step.action == WAIT:
        return f"while kill -0 {step.target} 2>/dev/null; do sleep {constants.PROCESS_EXIT_POLL}; done"
    # REMOVE and SELF_REMOVE
    return f"rm -f {target}"


def render_script(steps: List[TeardownStep], script_path: str, client_executable: str,
                  escalation_tool: Optional[str] = None, device: str = "") -> str:
    """
    Render a plan as a self-contained shell script.

    The script re-executes itself through `escalation_tool` (sudo when not
    given) if it is not run as root.
    """
    tool = escalation_tool or "sudo"
    plan_json = json.dumps([step.to_dict() for step in steps])
    lines = [
        "#!/bin/sh",
        f"# Teardown for {device} generated by {__app_name__} {__version__}",
        f"{PLAN_MARKER}{plan_json}",
        'if [ "$(id -u)" -ne 0 ]; then',
        f'    exec {shlex.quote(tool)} {shlex.quote(script_path)} "$@"',
        "fi",
    ]
    lines += [_render_step(step, client_executable) for step in steps]
    return "\n".join(lines) + "\n"


def load_plan(script_path: str) -> List[TeardownStep]:
    """Read the plan back from a generated script."""
    with open(script_path, 'r') as f:
        for line in f:
            if line.startswith(PLAN_MARKER):
                return [TeardownStep.from_dict(item) for item in json.loads(line[len(PLAN_MARKER):])]
    raise ValueError(f"No teardown plan found in {script_path}")


def emit_teardown(session: Session, client_executable: str, escalation_tool: Optional[str] = None) -> str:
    """
    Write the teardown script for an armed session.

    The body is written while the file is still 0600; execute permission is
    granted only afterwards.

    Returns:
        Path of the script
    """
    steps = build_plan(session)
    content = render_script(steps, session.teardown_path, client_executable, escalation_tool, session.device)
    fd = os.open(session.teardown_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, constants.PRIVATE_FILE_MODE)
    with os.fdopen(fd, 'w') as f:
        f.write(content)
    os.chmod(session.teardown_path, constants.SCRIPT_FILE_MODE)
    log_info("TEARDOWN", f"Teardown script written to {session.teardown_path}")
    return session.teardown_path

# --- END OF FILE teardown.py ---
