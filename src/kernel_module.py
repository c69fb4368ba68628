"""
Kernel Module Ensurer: make sure the nbd driver is loaded before any device
is probed or bound.
"""

import os
from typing import Optional

import config_manager
import constants
from debug_logging import log_debug, log_info
from errors import CommandError, ModuleLoadFailed
from nbd_client import run_command
from paths import find_executable
from privilege import Capability


def is_module_loaded(name: str) -> bool:
    """Check /sys/module/<name>, falling back to /proc/modules."""
    if os.path.isdir(os.path.join(constants.SYS_MODULE_DIR, name)):
        return True
    try:
        with open(constants.PROC_MODULES_PATH, 'r') as f:
            for line in f:
                if line.split(' ', 1)[0] == name:
                    return True
    except OSError:
        pass
    return False


def ensure_module_loaded(capability: Capability, name: Optional[str] = None) -> None:
    """
    Load the block-device driver module on demand.

    Raises:
        ModuleLoadFailed: If modprobe is missing, fails, or the module is still
                          absent afterwards. Never proceeds without the module.
    """
    if name is None:
        name = config_manager.get_setting("module_name", constants.NBD_MODULE_NAME)

    if is_module_loaded(name):
        log_debug("KMOD", f"Module {name} already loaded")
        return

    modprobe = find_executable("modprobe")
    if not modprobe:
        raise ModuleLoadFailed(f"Kernel module {name} is not loaded", details="modprobe not found")

    cmd = capability.wrap([modprobe, name])
    log_info("KMOD", f"Loading kernel module {name}...")
    returncode, _, stderr = run_command(cmd)
    if returncode != 0:
        raise ModuleLoadFailed(
            f"Could not load kernel module {name}",
            details=str(CommandError("modprobe failed", cmd, stderr, returncode)))

    if not is_module_loaded(name):
        raise ModuleLoadFailed(f"Kernel module {name} not present after modprobe")
