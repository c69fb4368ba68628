"""
Privilege Gate

Kernel-facing operations (loading the nbd module, binding and unbinding
devices) need root. Instead of re-executing the whole program under an
escalation tool, a Capability token is acquired once at session start and
handed to the components that need it; they run their commands through
`Capability.wrap()`.

Responsibilities:
- Detect whether we already run as root
- Pick an escalation tool (sudo, pkexec, doas) in configured preference order
- Validate it once so later prompts are not needed (sudo caches credentials)
"""

import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional

import config_manager
import constants
import utils
from debug_logging import log_debug, log_info
from errors import PrivilegeUnavailable


@dataclass(frozen=True)
class Capability:
    """
    Token proving that privileged commands can be run.

    Attributes:
        tool: Absolute path of the escalation tool, or None when already root
        allow_tty_prompt: If False, sudo is invoked with -n (non-interactive)
    """
    tool: Optional[str] = None
    allow_tty_prompt: bool = False

    @property
    def is_root(self) -> bool:
        return self.tool is None

    @property
    def tool_name(self) -> Optional[str]:
        return os.path.basename(self.tool) if self.tool else None

    def wrap(self, cmd: List[str]) -> List[str]:
        """Build the command array that runs `cmd` with root rights."""
        if self.tool is None:
            return list(cmd)
        if self.tool_name == "sudo" and not self.allow_tty_prompt:
            return [self.tool, '-n'] + list(cmd)  # -n = non-interactive
        return [self.tool] + list(cmd)


def _get_privilege_escalation_tools(preference: Optional[List[str]] = None) -> List[str]:
    """
    Get ordered list of available privilege escalation tools.

    Returns:
        List of paths to escalation tools in preference order (only tools
        that exist on the system).
    """
    if preference is None:
        preference = config_manager.get_setting("escalation_tools", constants.DEFAULT_ESCALATION_TOOLS)
    tools = []
    for name in preference:
        path = shutil.which(name)
        if path:
            tools.append(path)
    return tools


def ensure_privilege(preference: Optional[List[str]] = None) -> Capability:
    """
    Acquire the capability to run kernel operations.

    Args:
        preference: Escalation tool names to try, in order (default from config)

    Returns:
        Capability token (empty when running as root)

    Raises:
        PrivilegeUnavailable: If not root and no tool exists, or the first
                              available tool fails its validation run.
    """
    if os.geteuid() == 0:
        log_debug("PRIV", "Running as root, no escalation needed.")
        return Capability()

    if preference is None:
        preference = config_manager.get_setting("escalation_tools", constants.DEFAULT_ESCALATION_TOOLS)
    tools = _get_privilege_escalation_tools(preference)
    if not tools:
        raise PrivilegeUnavailable(
            "Root privileges are required and no escalation tool was found",
            details="tried: " + ", ".join(preference))

    capability = Capability(tool=tools[0], allow_tty_prompt=utils.is_interactive())
    log_info("PRIV", f"Using privilege escalation: {capability.tool}")

    # Validate once; no fallback to the next tool, the failure is reported as-is
    cmd = capability.wrap(["true"])
    try:
        result = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, check=False)
    except OSError as e:
        raise PrivilegeUnavailable(f"Failed to run {capability.tool_name}", details=str(e)) from e
    if result.returncode != 0:
        stderr = result.stderr.decode('utf-8', errors='replace') if result.stderr else ""
        raise PrivilegeUnavailable(
            f"{capability.tool_name} failed (exit {result.returncode})",
            details=stderr or None)
    return capability
