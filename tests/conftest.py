"""
Shared pytest fixtures for nbdattach tests.

This module provides common fixtures including:
- CommandMocker: intercept subprocess.run (nbd-client, modprobe, sudo) with
  canned responses
- Isolated configuration (every test starts from defaults)
- A fake backend executable that follows the daemon handshake contract
"""

import os
import shutil
import subprocess
import sys
import tempfile
import textwrap
from dataclasses import dataclass
from typing import List, Optional, Pattern, Union
from unittest.mock import MagicMock

import pytest

# Modules live flat in src/
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

import config_manager  # noqa: E402
import debug_logging  # noqa: E402
import paths  # noqa: E402


# =============================================================================
# Command Mocking Infrastructure
# =============================================================================

@dataclass
class CommandResponse:
    """Represents a mocked helper command response."""
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0

    def to_completed_process(self) -> MagicMock:
        result = MagicMock()
        result.stdout = self.stdout.encode()
        result.stderr = self.stderr.encode()
        result.returncode = self.returncode
        return result


class CommandMocker:
    """
    Mock subprocess.run with pattern-matched responses.

    Patterns are substrings (or compiled regexes) matched against the full
    command line joined with spaces. The first registered match wins.

    Usage:
        def test_probe(command_mocker):
            command_mocker.register("-c /dev/nbd0", CommandResponse(returncode=1))
            ...
            assert command_mocker.was_called_with("-c /dev/nbd0")
    """

    def __init__(self):
        self._responses: List[tuple] = []
        self.calls: List[List[str]] = []
        self._default_response = CommandResponse(stderr="mock not configured for this command", returncode=127)

    def register(self, pattern: Union[str, Pattern], response: CommandResponse) -> "CommandMocker":
        self._responses.append((pattern, response))
        return self

    def set_default_response(self, response: CommandResponse) -> "CommandMocker":
        self._default_response = response
        return self

    def mock_run(self, cmd, *args, **kwargs) -> MagicMock:
        cmd = list(cmd)
        self.calls.append(cmd)
        cmd_str = " ".join(cmd)
        for pattern, response in self._responses:
            if isinstance(pattern, str):
                if pattern in cmd_str:
                    return response.to_completed_process()
            elif pattern.search(cmd_str):
                return response.to_completed_process()
        return self._default_response.to_completed_process()

    def was_called_with(self, fragment: str) -> bool:
        return any(fragment in " ".join(cmd) for cmd in self.calls)

    def calls_matching(self, fragment: str) -> List[List[str]]:
        return [cmd for cmd in self.calls if fragment in " ".join(cmd)]


@pytest.fixture
def command_mocker(monkeypatch):
    mocker = CommandMocker()
    monkeypatch.setattr(subprocess, "run", mocker.mock_run)
    return mocker


# =============================================================================
# Environment isolation
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the config at a file that does not exist and reset global state."""
    config_path = tmp_path / "config.json"
    monkeypatch.setenv(config_manager.CONFIG_ENV_VAR, str(config_path))
    config_manager.reset_cache()
    debug_logging.set_debug_mode(False)
    debug_logging.set_quiet_mode(False)
    yield config_path
    config_manager.reset_cache()
    debug_logging.set_debug_mode(False)
    debug_logging.set_quiet_mode(False)


@pytest.fixture
def write_config(isolated_config):
    """Write a JSON config and make the next lookup read it."""
    import json

    def _write(settings: dict):
        isolated_config.write_text(json.dumps(settings))
        config_manager.reset_cache()
        return isolated_config
    return _write


@pytest.fixture
def runtime_dir(monkeypatch):
    """
    Short private runtime directory (Unix socket paths are length limited,
    pytest's tmp_path can be too long).
    """
    directory = tempfile.mkdtemp(prefix="nbdat-", dir="/tmp")
    monkeypatch.setattr(paths, "get_user_runtime_dir", lambda uid: directory)
    yield directory
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run the test from an empty working directory (default teardown location)."""
    directory = tmp_path / "work"
    directory.mkdir()
    monkeypatch.chdir(directory)
    return directory


# =============================================================================
# Fake backend
# =============================================================================

FAKE_BACKEND = textwrap.dedent('''\
    #!{python}
    """Fake block server: -q -u SOCK [-l LOG] -d appended after user args."""
    import os, signal, socket, sys, time

    argv = sys.argv[1:]
    mode = argv[0] if argv and not argv[0].startswith("-") else "ok"
    sock_path = argv[argv.index("-u") + 1]

    if mode == "fail":
        sys.stderr.write("backend: cannot open image\\n")
        sys.exit(3)
    if mode == "garbage":
        print("ready!")
        sys.exit(0)

    pid = os.fork()
    if pid:
        print(f"{{pid}} 1024", flush=True)
        os._exit(0)

    os.setsid()
    devnull = os.open(os.devnull, os.O_RDWR)
    os.dup2(devnull, 1)
    if mode == "die":
        os._exit(1)
    if mode == "slow":
        time.sleep(0.3)

    def _stop(signum, frame):
        try:
            os.unlink(sock_path)
        except OSError:
            pass
        os._exit(0)

    signal.signal(signal.SIGTERM, _stop)
    server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    server.bind(sock_path)
    server.listen(1)
    while True:
        time.sleep(1)
''')


@pytest.fixture
def fake_backend(tmp_path):
    """Path to an executable fake backend. First argument selects ok/fail/garbage/die/slow."""
    script = tmp_path / "fake-backend"
    script.write_text(FAKE_BACKEND.format(python=sys.executable))
    script.chmod(0o755)
    return str(script)


def kill_if_alive(pid: Optional[int]) -> None:
    """Best-effort cleanup for backends a failing test left behind."""
    if not pid:
        return
    try:
        os.kill(pid, 9)
    except OSError:
        pass
