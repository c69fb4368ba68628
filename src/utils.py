# --- START OF FILE utils.py ---

import os
import stat
import sys


def is_interactive() -> bool:
    """True when stdin is a terminal the user can answer prompts on."""
    try:
        return sys.stdin is not None and sys.stdin.isatty()
    except (AttributeError, ValueError):
        return False


def confirm(question: str, assume_yes=None) -> bool:
    """
    Ask a yes/no question on the terminal, defaulting to No.

    Args:
        question: Prompt text without the [y/N] suffix
        assume_yes: Force the answer (True/False). When None, the answer is
                    read from the terminal if interactive, otherwise Yes.
    """
    if assume_yes is not None:
        return bool(assume_yes)
    if not is_interactive():
        return True
    # stdout carries the session report; the question goes to stderr
    print(f"{question} [y/N]: ", end="", file=sys.stderr, flush=True)
    try:
        response = input().strip().lower()
    except EOFError:
        return False
    return response in ('y', 'yes')


def is_socket(path: str) -> bool:
    try:
        return stat.S_ISSOCK(os.stat(path).st_mode)
    except OSError:
        return False


def is_writable_target(path: str) -> bool:
    """Checks that `path` can be created or overwritten by the current user."""
    parent = os.path.dirname(os.path.abspath(path)) or "."
    if os.path.exists(path):
        if is_socket(path):
            # Replacing a socket only needs write access to its directory
            return os.access(parent, os.W_OK | os.X_OK)
        return os.path.isfile(path) and os.access(path, os.W_OK)
    return os.path.isdir(parent) and os.access(parent, os.W_OK | os.X_OK)


def remove_file(path: str) -> bool:
    """Remove a file if present. Returns True if something was removed."""
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False

# --- END OF FILE utils.py ---
