"""
Unified Logging Utility for NbdAttach

Provides a centralized logging system that:
- Routes all diagnostics to stderr, never stdout (stdout carries the
  machine-parsable session report)
- Filters DEBUG-level messages based on --debug flag
- Silences everything when --quiet is requested

Usage:
    from debug_logging import log, set_debug_mode, set_quiet_mode

Modules call:
    log("BACKEND", "message")                    # INFO level (hidden in quiet mode)
    log("BACKEND", "verbose details", "DEBUG")   # Only logged with --debug
    log("MAIN", "error occurred", "ERROR")       # Logged unless quiet
"""

import sys

# Global state
_debug_enabled = False
_quiet_enabled = False


def set_debug_mode(enabled: bool) -> None:
    """Enable or disable debug logging globally."""
    global _debug_enabled
    _debug_enabled = enabled


def set_quiet_mode(enabled: bool) -> None:
    """Enable or disable quiet mode (no diagnostics at all)."""
    global _quiet_enabled
    _quiet_enabled = enabled


def is_debug_enabled() -> bool:
    """Check if debug mode is enabled."""
    return _debug_enabled


def log(prefix: str, message: str, level: str = "INFO") -> None:
    """
    Log a message with the specified level.

    Args:
        prefix: Module prefix (e.g., "BACKEND", "DEVICE", "MAIN")
        message: The log message
        level: Log level - DEBUG, INFO, WARNING, ERROR
               DEBUG messages are only shown when debug mode is enabled.
               Nothing is shown in quiet mode.
    """
    if _quiet_enabled:
        return
    if level == "DEBUG" and not _debug_enabled:
        return

    txt = f"{prefix} [{level}]: {message}" if prefix else f"[{level}]: {message}"
    print(txt, file=sys.stderr)


# Convenience aliases for cleaner code
def log_debug(prefix: str, message: str) -> None:
    """Shortcut for DEBUG level logging."""
    log(prefix, message, "DEBUG")

def log_info(prefix: str, message: str) -> None:
    """Shortcut for INFO level logging."""
    log(prefix, message, "INFO")

def log_warning(prefix: str, message: str) -> None:
    """Shortcut for WARNING level logging."""
    log(prefix, message, "WARNING")

def log_error(prefix: str, message: str) -> None:
    """Shortcut for ERROR level logging."""
    log(prefix, message, "ERROR")
