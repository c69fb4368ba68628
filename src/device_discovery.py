# --- START OF FILE device_discovery.py ---
"""
Device discovery: pick the nbd device node a session binds to.

Candidates are /dev/nbd0, /dev/nbd1, ... in strictly ascending order; the
first node that either does not exist or is reported unbound by
`nbd-client -c` wins. Enumeration stops at the kernel's nbds_max parameter
(or the max_devices setting when sysfs does not expose it).
"""

import os
from typing import Iterator, Optional

import config_manager
import constants
from debug_logging import log_debug, log_info
from errors import NoDeviceAvailable
from nbd_client import NbdClient


def get_device_count() -> int:
    """Number of device nodes the driver was configured with."""
    try:
        with open(constants.NBDS_MAX_PARAM, 'r') as f:
            count = int(f.read().strip())
            if count > 0:
                return count
    except (OSError, ValueError):
        pass
    try:
        return int(config_manager.get_setting("max_devices", constants.DEFAULT_MAX_DEVICES))
    except (ValueError, TypeError):
        return constants.DEFAULT_MAX_DEVICES


def candidate_devices(count: int, prefix: str = constants.DEVICE_PREFIX) -> Iterator[str]:
    for index in range(count):
        yield f"{prefix}{index}"


def discover_device(explicit: Optional[str], client: NbdClient, max_devices: Optional[int] = None) -> str:
    """
    Find a usable device node.

    Args:
        explicit: Device requested by the caller, or None to search
        client: NbdClient used to probe bindings
        max_devices: Upper bound for the search (default: nbds_max)

    Returns:
        Path of the selected device node

    Raises:
        NoDeviceAvailable: If the explicit device does not exist or is bound,
                           or every candidate is bound.
    """
    if explicit:
        if not os.path.exists(explicit):
            raise NoDeviceAvailable(f"Device {explicit} does not exist")
        if client.is_bound(explicit):
            raise NoDeviceAvailable(f"Device {explicit} is already in use")
        return explicit

    if max_devices is None:
        max_devices = get_device_count()

    for device in candidate_devices(max_devices):
        if not os.path.exists(device):
            log_debug("DEVICE", f"{device} does not exist, selecting it")
            return device
        if not client.is_bound(device):
            log_info("DEVICE", f"Using free device {device}")
            return device
        log_debug("DEVICE", f"{device} is bound, skipping")

    raise NoDeviceAvailable(f"All {max_devices} nbd devices are in use")

# --- END OF FILE device_discovery.py ---
