# --- START OF FILE errors.py ---
"""
Error taxonomy for nbdattach.

Every error carries the process exit code the CLI reports for it:

    InvocationError / UserAborted   -> 1  (nothing touched)
    EnvironmentUnavailable          -> 2  (nothing created yet)
    ResourceError                   -> 3  (partial resources rolled back)
    LaunchError                     -> 4  (all session resources rolled back)
"""

import shlex

import constants


class NbdAttachError(Exception):
    """Base class for all nbdattach errors."""
    exit_code = constants.EXIT_INVOCATION

    def __init__(self, message, details=None):
        super().__init__(message)
        self.details = details

    def __str__(self):
        if self.details:
            details_str = str(self.details).strip()
            if len(details_str) > 300: details_str = details_str[:300] + "..."
            return f"{super().__str__()} ({details_str})"
        return super().__str__()


# --- Exit code 1 ---
class InvocationError(NbdAttachError):
    """Bad flags or missing arguments."""
    exit_code = constants.EXIT_INVOCATION

class UserAborted(NbdAttachError):
    """The user declined to overwrite an existing file."""
    exit_code = constants.EXIT_INVOCATION


# --- Exit code 2 ---
class EnvironmentUnavailable(NbdAttachError):
    """A required piece of the host environment is missing."""
    exit_code = constants.EXIT_ENVIRONMENT

class PrivilegeUnavailable(EnvironmentUnavailable):
    """Not root and no working escalation tool."""

class ModuleLoadFailed(EnvironmentUnavailable):
    """The nbd kernel module is not loaded and could not be loaded."""

class ClientNotFound(EnvironmentUnavailable):
    """The nbd-client utility could not be located."""


# --- Exit code 3 ---
class ResourceError(NbdAttachError):
    """Device or resource-file access failure."""
    exit_code = constants.EXIT_RESOURCE

class NoDeviceAvailable(ResourceError):
    """The requested device does not exist, is in use, or no device is free."""

class ResourceAccessError(ResourceError):
    """An ephemeral file could not be created, written or replaced."""


# --- Exit code 4 ---
class LaunchError(NbdAttachError):
    """The backend could not be started, never became ready, or could not be bound."""
    exit_code = constants.EXIT_LAUNCH

class LaunchFailed(LaunchError):
    """The backend exited non-zero, could not be executed, or sent a malformed handshake."""

class ReadyTimeout(LaunchError):
    """The backend socket did not appear within the configured timeout."""

class BindFailed(LaunchError):
    """nbd-client could not bind the device to the backend socket."""


class CommandError(Exception):
    """A helper command (modprobe, nbd-client, escalation tool) failed."""
    def __init__(self, message, command_parts=None, stderr=None, returncode=None):
        super().__init__(message)
        self.command_parts = command_parts
        self.stderr = stderr
        self.returncode = returncode

    def __str__(self):
        details = []
        if self.command_parts:
            try: details.append(f"Command: {shlex.join(self.command_parts)}")
            except TypeError: details.append(f"Command: {self.command_parts}")
        if self.returncode is not None: details.append(f"Return Code: {self.returncode}")
        if self.stderr:
            stderr_short = self.stderr.strip()
            if len(stderr_short) > 300: stderr_short = stderr_short[:300] + "..."
            details.append(f"Stderr: {stderr_short}")
        details_str = " (" + ", ".join(details) + ")" if details else ""
        return f"{super().__str__()}{details_str}"

# --- END OF FILE errors.py ---
