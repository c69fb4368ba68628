# --- START OF FILE models.py ---

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class SessionMode(Enum):
    FOREGROUND = "foreground"
    DAEMON = "daemon"


class SessionState(Enum):
    STARTING = "starting"
    READY = "ready"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class ResourceHandle:
    """One ephemeral artifact of a session (socket, log, teardown script)."""
    kind: str  # 'socket', 'log', 'teardown'
    path: str
    owned: bool = False
    created_by_session: bool = False


@dataclass(frozen=True)
class Handshake:
    """The (pid, block_size) pair a backend reports once it is ready to serve."""
    pid: int
    block_size: int


@dataclass
class Session:
    device: str
    socket_path: str
    teardown_path: str
    log_path: Optional[str] = None
    mode: SessionMode = SessionMode.FOREGROUND
    quiet: bool = False
    handshake: Optional[Handshake] = None
    state: SessionState = SessionState.STARTING
    # Acquisition order matters: rollback walks this list backwards
    handles: List[ResourceHandle] = field(default_factory=list, repr=False)

    @property
    def backend_pid(self) -> Optional[int]:
        return self.handshake.pid if self.handshake else None

    @property
    def block_size(self) -> Optional[int]:
        return self.handshake.block_size if self.handshake else None

    @property
    def armed(self) -> bool:
        """True once a backend pid is known; failures must then terminate it."""
        return self.handshake is not None

    @property
    def is_daemon(self) -> bool:
        return self.mode is SessionMode.DAEMON

    def get_handle(self, kind: str) -> Optional[ResourceHandle]:
        for handle in self.handles:
            if handle.kind == kind:
                return handle
        return None

    def owns_log(self) -> bool:
        handle = self.get_handle("log")
        return bool(handle and handle.created_by_session)

# --- END OF FILE models.py ---
