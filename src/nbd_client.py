# --- START OF FILE nbd_client.py ---
"""
Wrapper around the kernel attach utility (nbd-client).

- locate_client(): find the executable (PATH → sbin fallbacks → elevated lookup)
- NbdClient: probe / attach / detach a device node
- run_command(): shared subprocess runner used by the kernel-facing modules
"""

import os
import shlex
import subprocess
import traceback
from typing import List, Optional

import config_manager
import constants
from debug_logging import log_debug, log_error
from errors import BindFailed, ClientNotFound, CommandError
from paths import find_executable
from privilege import Capability


# --- Internal Command Runner ---
def run_command(command_parts: List[str], *, timeout: Optional[float] = constants.COMMAND_TIMEOUT) -> tuple[int, str, str]:
    """
    Runs a command using subprocess, capturing output.

    Output of the tool is never echoed; it is returned to the caller and
    logged on failure.

    Returns:
        (returncode, stdout, stderr); returncode is -1 when the command could
        not be run at all.
    """
    if not command_parts or not command_parts[0]:
        err_msg = "Error: Invalid command parts provided to run_command."
        log_error("CMD", err_msg)
        return -1, "", err_msg

    try:
        cmd_str_safe = shlex.join(command_parts)
    except TypeError:
        cmd_str_safe = str(command_parts)

    log_debug("CMD", f"Executing: {cmd_str_safe}")
    stdout, stderr, returncode = "", "", -1
    try:
        process = subprocess.run(
            command_parts,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE, stderr=subprocess.PIPE,
            check=False,
            timeout=timeout,
        )
        returncode = process.returncode
        stdout = process.stdout.decode('utf-8', errors='replace') if process.stdout else ""
        stderr = process.stderr.decode('utf-8', errors='replace') if process.stderr else ""
        if returncode != 0:
            log_debug("CMD", f"Command failed (ret={returncode}) for: {cmd_str_safe}")
            if stderr: log_debug("CMD", f"Stderr:\n{stderr.strip()}")
    except FileNotFoundError:
        stderr = f"Error: Command not found: '{command_parts[0]}'."
        log_error("CMD", stderr)
    except PermissionError:
        stderr = f"Error: Permission denied executing '{command_parts[0]}'."
        log_error("CMD", stderr)
    except subprocess.TimeoutExpired:
        stderr = f"Error: Command '{cmd_str_safe}' timed out after {timeout} seconds."
        log_error("CMD", stderr)
    except OSError as e:
        stderr = f"Unexpected error running command {cmd_str_safe}: {e}"
        log_error("CMD", f"{stderr}\n{traceback.format_exc()}")
    return returncode, stdout, stderr


def locate_client(capability: Capability, name: Optional[str] = None) -> str:
    """
    Resolve the path to the nbd-client utility.

    Search order: PATH → fixed fallback directories (plus configured
    client_search_paths) → lookup through the escalation tool, whose PATH
    usually includes the sbin directories.

    Raises:
        ClientNotFound: If none of the strategies finds an executable
    """
    if name is None:
        name = config_manager.get_setting("client_name", constants.DEFAULT_CLIENT_NAME)
    extra_paths = config_manager.get_setting("client_search_paths", [])

    path = find_executable(name, extra_paths)
    if path:
        log_debug("CLIENT", f"Found {name} at {path}")
        return path

    if not capability.is_root:
        cmd = capability.wrap(["sh", "-c", f"command -v {shlex.quote(name)}"])
        returncode, stdout, _ = run_command(cmd)
        candidate = stdout.strip().splitlines()[0] if stdout.strip() else ""
        if returncode == 0 and os.path.isabs(candidate):
            log_debug("CLIENT", f"Found {name} at {candidate} (elevated lookup)")
            return candidate

    raise ClientNotFound(f"Could not find {name}", details="install the nbd client package")


class NbdClient:
    """Runs nbd-client in probe, attach and detach mode."""

    def __init__(self, executable: str, capability: Capability):
        self.executable = executable
        self.capability = capability

    def is_bound(self, device: str) -> bool:
        """
        Probe whether `device` is currently bound (nbd-client -c).

        Any answer other than a clear "not connected" counts as bound so the
        device is never picked by discovery.
        """
        returncode, stdout, stderr = run_command([self.executable, "-c", device])
        if returncode == constants.PROBE_UNBOUND:
            return False
        if returncode != constants.PROBE_BOUND:
            log_debug("CLIENT", f"Probe of {device} returned {returncode}, treating as in use: {stderr.strip()}")
        return True

    def attach(self, device: str, socket_path: str, block_size: int) -> None:
        """Bind `device` to the backend listening on `socket_path`."""
        cmd = self.capability.wrap([self.executable, "-unix", socket_path, device, "-b", str(block_size)])
        returncode, _, stderr = run_command(cmd)
        if returncode != 0:
            raise BindFailed(
                f"Could not bind {device} to {socket_path}",
                details=str(CommandError("nbd-client attach failed", cmd, stderr, returncode)))

    def detach(self, device: str) -> bool:
        """Unbind `device`. Returns False (and logs) when nbd-client reports an error."""
        cmd = self.capability.wrap([self.executable, "-d", device])
        returncode, _, stderr = run_command(cmd)
        if returncode != 0:
            log_debug("CLIENT", str(CommandError(f"Detach of {device} failed", cmd, stderr, returncode)))
            return False
        return True

# --- END OF FILE nbd_client.py ---
