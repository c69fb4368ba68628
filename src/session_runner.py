# --- START OF FILE session_runner.py ---
"""
Session Runner: the last stage of a session.

    STARTING → READY → RUNNING → STOPPING → STOPPED

Daemon mode reports the session and leaves everything running; the
generated teardown script performs STOPPING/STOPPED later. Foreground mode
blocks until SIGINT/SIGTERM and then runs the teardown exactly once.
"""

import signal
import sys
import threading
from typing import Callable, Optional, TextIO

import constants
from debug_logging import log_debug, log_info
from models import Session, SessionState

_TRANSITIONS = {
    SessionState.STARTING: {SessionState.READY},
    SessionState.READY: {SessionState.RUNNING},
    SessionState.RUNNING: {SessionState.STOPPING},
    SessionState.STOPPING: {SessionState.STOPPED},
    SessionState.STOPPED: set(),
}

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SessionRunner:
    def __init__(self, session: Session, stop_fn: Callable[[Session], None]):
        """
        Args:
            session: Session whose backend is running and device bound
            stop_fn: Teardown to run inline when a foreground session is interrupted
        """
        self.session = session
        self.stop_fn = stop_fn
        self._stop_requested = threading.Event()
        self._previous_handlers = {}

    @property
    def state(self) -> SessionState:
        return self.session.state

    def transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.session.state]:
            raise RuntimeError(f"Illegal session transition {self.session.state.name} -> {new_state.name}")
        log_debug("RUNNER", f"{self.session.state.name} -> {new_state.name}")
        self.session.state = new_state

    def mark_running(self) -> None:
        """STARTING → READY → RUNNING once the device is bound."""
        if self.session.state is SessionState.STARTING:
            self.transition(SessionState.READY)
        if self.session.state is SessionState.READY:
            self.transition(SessionState.RUNNING)

    # --- Daemon mode ---

    def report(self, out: Optional[TextIO] = None) -> None:
        """Print the device node, plus log and teardown paths unless quiet."""
        if out is None:
            out = sys.stdout
        print(self.session.device, file=out)
        if not self.session.quiet:
            if self.session.log_path:
                print(f"log: {self.session.log_path}", file=out)
            print(f"teardown: {self.session.teardown_path}", file=out)
        out.flush()

    def run_daemon(self, out: Optional[TextIO] = None) -> int:
        self.mark_running()
        self.report(out)
        return constants.EXIT_OK

    # --- Foreground mode ---

    def _handle_interrupt(self, signum, frame):
        if self._stop_requested.is_set():
            # Teardown already running, do not re-enter
            log_debug("RUNNER", f"Ignoring signal {signum} during teardown")
            return
        sig_name = signal.Signals(signum).name if hasattr(signal, 'Signals') else str(signum)
        log_info("RUNNER", f"Received {sig_name}, tearing down {self.session.device}...")
        self._stop_requested.set()

    def request_stop(self) -> None:
        """Stop a foreground session from code (same path as an interrupt)."""
        self._handle_interrupt(signal.SIGINT, None)

    def _install_handlers(self) -> None:
        for signum in STOP_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_interrupt)

    def _restore_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def run_foreground(self) -> int:
        """Block until interrupted, then tear the session down once."""
        self.mark_running()
        self._install_handlers()
        try:
            log_info("RUNNER", f"{self.session.device} attached. Press Ctrl+C to detach.")
            # Periodic wake-ups let the signal handler run promptly on every platform
            while not self._stop_requested.wait(constants.IDLE_WAIT_INTERVAL):
                pass
            self.transition(SessionState.STOPPING)
            self.stop_fn(self.session)
            self.transition(SessionState.STOPPED)
        finally:
            self._restore_handlers()
        log_info("RUNNER", f"{self.session.device} detached.")
        return constants.EXIT_OK

# --- END OF FILE session_runner.py ---
