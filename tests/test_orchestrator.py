"""End-to-end session tests with a real (fake) backend and a mocked nbd-client."""

import io
import os
import signal
import stat
import time

import pytest

import main
import orchestrator
import utils
from conftest import CommandResponse, kill_if_alive
from errors import BindFailed, LaunchFailed, NoDeviceAvailable
from nbd_client import NbdClient
from orchestrator import AttachOptions, attach
from privilege import Capability
from readiness import process_exists
from session_runner import SessionRunner
from teardown import load_plan, run_plan

CLIENT = "/usr/sbin/nbd-client"
DEVICE = "/dev/nbd1"


@pytest.fixture
def host(monkeypatch, command_mocker, runtime_dir, workdir):
    """Root host with the module loaded and nbd1 free; nbd-client attach/detach succeed."""
    monkeypatch.setattr(orchestrator, "ensure_privilege", lambda: Capability())
    monkeypatch.setattr(orchestrator, "ensure_module_loaded", lambda capability: None)
    monkeypatch.setattr(orchestrator, "locate_client", lambda capability: CLIENT)
    monkeypatch.setattr(orchestrator, "discover_device", lambda explicit, client: explicit or DEVICE)
    command_mocker.register("-unix", CommandResponse(returncode=0))
    command_mocker.register(f"-d {DEVICE}", CommandResponse(returncode=0))
    return command_mocker


def _files(*directories):
    return sorted(name for d in directories for name in os.listdir(d))


def _pid_from_plan(path):
    for step in load_plan(path):
        if step.action == "terminate":
            return step.target
    return None


def test_daemon_session(host, fake_backend, runtime_dir, workdir):
    out = io.StringIO()
    rc = attach(AttachOptions(backend=fake_backend, backend_args=["ok"]), out)
    teardown_path = str(workdir / "nbd1-teardown.sh")
    pid = _pid_from_plan(teardown_path)
    try:
        assert rc == 0
        lines = out.getvalue().splitlines()
        assert lines[0] == DEVICE
        assert lines[-1] == f"teardown: {teardown_path}"
        assert stat.S_IMODE(os.stat(teardown_path).st_mode) == 0o700
        assert process_exists(pid)
        attach_calls = host.calls_matching("-unix")
        assert len(attach_calls) == 1
        assert attach_calls[0][-2:] == ["-b", "1024"]

        # Running the saved plan undoes everything
        run_plan(load_plan(teardown_path), NbdClient(CLIENT, Capability()), wait_timeout=10)
        assert not process_exists(pid)
        assert host.was_called_with(f"-d {DEVICE}")
        assert _files(runtime_dir, workdir) == []
    finally:
        kill_if_alive(pid)


def test_quiet_daemon_prints_one_line(host, fake_backend, runtime_dir, workdir):
    out = io.StringIO()
    kill = os.path.join(runtime_dir, "kill.sh")
    rc = attach(AttachOptions(backend=fake_backend, backend_args=["ok"], quiet=True, kill_script=kill), out)
    pid = _pid_from_plan(kill)
    try:
        assert rc == 0
        assert out.getvalue() == f"{DEVICE}\n"
    finally:
        run_plan(load_plan(kill), NbdClient(CLIENT, Capability()), wait_timeout=10)
        kill_if_alive(pid)


def test_foreground_session_tears_down(host, fake_backend, runtime_dir, workdir, monkeypatch):
    pids = []

    class InterruptedRunner(SessionRunner):
        def run_foreground(self):
            pids.append(self.session.backend_pid)
            self.request_stop()
            return super().run_foreground()

    monkeypatch.setattr(orchestrator, "SessionRunner", InterruptedRunner)
    try:
        rc = attach(AttachOptions(backend=fake_backend, backend_args=["ok"], foreground=True))
        assert rc == 0
        assert not process_exists(pids[0])
        assert host.was_called_with(f"-d {DEVICE}")
        assert _files(runtime_dir, workdir) == []
    finally:
        kill_if_alive(pids[0] if pids else None)


def test_launch_failure_leaves_nothing(host, fake_backend, runtime_dir, workdir):
    with pytest.raises(LaunchFailed) as exc_info:
        attach(AttachOptions(backend=fake_backend, backend_args=["fail"]))
    assert exc_info.value.exit_code == 4
    assert _files(runtime_dir, workdir) == []
    assert not host.was_called_with("-unix")


def test_backend_dies_before_socket(host, fake_backend, runtime_dir, workdir):
    with pytest.raises(LaunchFailed, match="exited"):
        attach(AttachOptions(backend=fake_backend, backend_args=["die"], ready_timeout=10))
    assert _files(runtime_dir, workdir) == []


def test_bind_failure_terminates_backend(host, fake_backend, runtime_dir, workdir, monkeypatch):
    pids = []

    def failing_attach(self, device, socket_path, block_size):
        pids.append(_pid_from_plan(str(workdir / "nbd1-teardown.sh")))
        raise BindFailed("Could not bind")

    monkeypatch.setattr(NbdClient, "attach", failing_attach)
    try:
        with pytest.raises(BindFailed) as exc_info:
            attach(AttachOptions(backend=fake_backend, backend_args=["slow"]))
        assert exc_info.value.exit_code == 4
        assert pids and not process_exists(pids[0])
        # Never bound, so nothing to detach
        assert not host.was_called_with(f"-d {DEVICE}")
        assert _files(runtime_dir, workdir) == []
    finally:
        kill_if_alive(pids[0] if pids else None)


def test_device_error_creates_nothing(host, fake_backend, runtime_dir, workdir, monkeypatch):
    def no_device(explicit, client):
        raise NoDeviceAvailable(f"Device {explicit} does not exist")

    monkeypatch.setattr(orchestrator, "discover_device", no_device)
    with pytest.raises(NoDeviceAvailable) as exc_info:
        attach(AttachOptions(backend=fake_backend, backend_args=["ok"], device="/dev/nbd9"))
    assert exc_info.value.exit_code == 3
    assert _files(runtime_dir, workdir) == []


def test_interrupt_during_wait_rolls_back(host, fake_backend, runtime_dir, workdir, monkeypatch):
    pids = []

    def interrupted_wait(socket_path, backend_pid=None, timeout=None, poll_interval=None):
        pids.append(backend_pid)
        raise KeyboardInterrupt

    monkeypatch.setattr(orchestrator, "await_ready", interrupted_wait)
    try:
        with pytest.raises(KeyboardInterrupt):
            attach(AttachOptions(backend=fake_backend, backend_args=["ok"]))
        assert not process_exists(pids[0])
        assert _files(runtime_dir, workdir) == []
    finally:
        kill_if_alive(pids[0] if pids else None)


def test_quiet_overwrite_prompt_keeps_stdout_clean(host, fake_backend, runtime_dir, workdir, monkeypatch, capsys):
    kill = workdir / "detach.sh"
    kill.write_text("#!/bin/sh\n")
    monkeypatch.setattr(utils, "is_interactive", lambda: True)
    monkeypatch.setattr("sys.stdin", io.StringIO("y\n"))

    rc = main.main(["-q", "-k", str(kill), fake_backend, "ok"])
    pid = _pid_from_plan(str(kill))
    try:
        assert rc == 0
        captured = capsys.readouterr()
        assert captured.out == f"{DEVICE}\n"
        assert "Overwrite" in captured.err
    finally:
        run_plan(load_plan(str(kill)), NbdClient(CLIENT, Capability()), wait_timeout=10)
        kill_if_alive(pid)


def test_quiet_launch_failure_is_silent(host, fake_backend, runtime_dir, workdir, capfd):
    assert main.main(["-q", fake_backend, "fail"]) == 4
    captured = capfd.readouterr()
    assert captured.out == ""
    assert captured.err == ""
    assert _files(runtime_dir, workdir) == []


def test_foreground_backend_gone_before_interrupt(host, fake_backend, runtime_dir, workdir, monkeypatch):
    pids = []

    class BackendDiesFirst(SessionRunner):
        def run_foreground(self):
            pid = self.session.backend_pid
            pids.append(pid)
            os.kill(pid, signal.SIGKILL)
            for _ in range(100):
                if not process_exists(pid):
                    break
                time.sleep(0.05)
            self.request_stop()
            return super().run_foreground()

    monkeypatch.setattr(orchestrator, "SessionRunner", BackendDiesFirst)
    try:
        rc = attach(AttachOptions(backend=fake_backend, backend_args=["ok"], foreground=True))
        assert rc == 0
        assert len(host.calls_matching(f"-d {DEVICE}")) == 1
        assert _files(runtime_dir, workdir) == []
    finally:
        kill_if_alive(pids[0] if pids else None)
