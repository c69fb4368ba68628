# Path configuration module for NbdAttach
# This module centralizes all path logic for the application
#
# Use `get_user_runtime_dir(uid)` to resolve per-UID runtime directories for
# the private session files (socket, log, teardown script).
#
# NOTE on XDG_RUNTIME_DIR:
# ------------------------
# We intentionally DO NOT use XDG_RUNTIME_DIR. The teardown script may be run
# later through sudo, where XDG_RUNTIME_DIR is unset or points at root's
# session; the paths baked into the script must not depend on it.

import os
import platform
import shutil
import tempfile
from pathlib import Path

import constants

# User configuration paths (per-user, in home directory)
USER_CONFIG_DIR = Path.home() / ".config" / "nbdattach"
USER_CONFIG_FILE_PATH = str(USER_CONFIG_DIR / "config.json")

RUNTIME_FALLBACK_DIR = "/tmp"  # Fallback base for runtime_dir resolution when no /run/user/<uid> exists

# linux-only: sbin directories hold nbd-client/modprobe but are often missing from a user's PATH
SYSTEM_BIN_DIRS = ['/usr/sbin', '/sbin', '/usr/local/sbin', '/usr/bin', '/bin', '/usr/local/bin']


def get_user_runtime_dir(uid: int) -> str:
    """Return a canonical runtime directory path for a given user id.

    Resolution order: /run/user/{uid} → /var/run/user/{uid} →
    /tmp/nbdattach-{uid} (created 0700).

    Args:
        uid: The UID for which to resolve the runtime dir

    Returns:
        str: Absolute path to a suitable runtime directory
    """
    if uid < 0:
        return RUNTIME_FALLBACK_DIR

    for candidate in (f"/run/user/{uid}", f"/var/run/user/{uid}"):
        if os.path.isdir(candidate) and os.access(candidate, os.W_OK):
            return candidate

    base = RUNTIME_FALLBACK_DIR if os.path.isdir(RUNTIME_FALLBACK_DIR) else tempfile.gettempdir()
    return _create_fallback_runtime_dir(base, f"{constants.RUNTIME_PREFIX}{uid}")


def _create_fallback_runtime_dir(base_dir: str, subdir_name: str) -> str:
    """Create a per-user fallback runtime directory with private permissions.

    Returns:
        str: Path to the created directory, or base_dir on failure
    """
    per_user_dir = os.path.join(base_dir, subdir_name)
    try:
        os.makedirs(per_user_dir, mode=0o700, exist_ok=True)
        return per_user_dir
    except OSError:
        return base_dir


def make_private_temp_file(tag: str, suffix: str, runtime_dir: str | None = None) -> str:
    """Create an empty 0600 file with a unique name and return its path.

    Args:
        tag: Human readable part of the name (usually the device basename)
        suffix: File suffix (".log", ".sock", "-teardown.sh")
        runtime_dir: Directory to create the file in (default: user runtime dir)
    """
    if runtime_dir is None:
        runtime_dir = get_user_runtime_dir(os.getuid())
    fd, path = tempfile.mkstemp(prefix=f"{constants.RUNTIME_PREFIX}{tag}-", suffix=suffix, dir=runtime_dir)
    os.close(fd)
    os.chmod(path, constants.PRIVATE_FILE_MODE)
    return path


def default_teardown_path(device: str, directory: str | None = None) -> str:
    """Human-readable teardown script path for detached sessions, e.g. ./nbd0-teardown.sh"""
    if directory is None:
        directory = os.getcwd()
    return os.path.abspath(os.path.join(directory, os.path.basename(device) + constants.TEARDOWN_SUFFIX))


def find_executable(name: str, additional_paths: list[str] | None = None) -> str | None:
    """Find an executable by name.

    First tries shutil.which which searches PATH, then falls back to searching
    the system binary directories plus any additional_paths provided.

    Args:
        name: Executable base name to find
        additional_paths: Optional list of paths to search before the system directories

    Returns:
        Absolute path if found, otherwise None
    """
    # 1) Check PATH via shutil.which
    path = shutil.which(name)
    if path:
        return path

    # 2) Fixed fallback directories
    if platform.system() != 'Linux':
        base_paths = ['/usr/local/sbin', '/usr/local/bin', '/usr/sbin', '/usr/bin', '/sbin', '/bin']
    else:
        base_paths = list(SYSTEM_BIN_DIRS)

    if additional_paths:
        base_paths = list(additional_paths) + base_paths

    for p in base_paths:
        candidate = os.path.join(p, name)
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate  # The first match is returned so earlier entries override later ones
    return None
