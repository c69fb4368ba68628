# --- START OF FILE constants.py ---

"""
Central location for constants used across the nbdattach modules.
"""

# --- Exit Codes ---
EXIT_OK = 0
EXIT_INVOCATION = 1        # Bad flags, missing args, or user declined an overwrite
EXIT_ENVIRONMENT = 2       # Kernel module, client utility or escalation tool unavailable
EXIT_RESOURCE = 3          # Device or resource-file access failure
EXIT_LAUNCH = 4            # Backend failed to start, never became ready, or bind failed
EXIT_INTERRUPTED = 130     # Interrupted during start-up (after rollback)

# --- Kernel / Device ---
NBD_MODULE_NAME = "nbd"
SYS_MODULE_DIR = "/sys/module"                      # linux-only: sysfs module directory
PROC_MODULES_PATH = "/proc/modules"                 # linux-only: fallback loaded-module list
NBDS_MAX_PARAM = "/sys/module/nbd/parameters/nbds_max"
DEVICE_PREFIX = "/dev/nbd"
DEFAULT_MAX_DEVICES = 16   # Kernel default for nbds_max

# --- Client Utility ---
DEFAULT_CLIENT_NAME = "nbd-client"
# nbd-client -c exit status: 0 = connected (prints pid), 1 = not connected
PROBE_BOUND = 0
PROBE_UNBOUND = 1

# --- Privilege Escalation ---
DEFAULT_ESCALATION_TOOLS = ["sudo", "pkexec", "doas"]

# --- Backend CLI contract ---
# Flags appended after the user's backend arguments
DEFAULT_BACKEND_FLAGS = {
    "quiet": "-q",
    "socket": "-u",
    "log": "-l",
    "daemon": "-d",
}

# --- Timeouts / Poll intervals ---
DEFAULT_READY_TIMEOUT = None   # No timeout: wait for the backend socket forever
POLL_INTERVAL = 0.05           # First interval when polling for the backend socket (seconds)
READY_MAX_BACKOFF = 0.5        # Upper bound for the socket poll interval (seconds)
PROCESS_EXIT_POLL = 0.1        # Poll interval while waiting for the backend pid to exit (seconds)
COMMAND_TIMEOUT = 60           # Timeout for helper commands (modprobe, nbd-client) in seconds
IDLE_WAIT_INTERVAL = 1.0       # Foreground sessions wake this often while waiting for an interrupt (seconds)

# --- File naming ---
RUNTIME_PREFIX = "nbdattach-"
TEARDOWN_SUFFIX = "-teardown.sh"
LOG_SUFFIX = ".log"
SOCKET_SUFFIX = ".sock"
PRIVATE_FILE_MODE = 0o600
SCRIPT_FILE_MODE = 0o700

# --- END OF FILE constants.py ---
