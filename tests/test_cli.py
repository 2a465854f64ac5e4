"""Tests for the opsguard command line."""

from __future__ import annotations

import json
import logging
import os
import signal
import subprocess
import time

import pytest

from helpers import cli, cli_env, py, wait_for_path
from opsguard_core import __version__
from opsguard_core.cli import _split_command, main
from opsguard_core.locking import METADATA_FILENAME, LockMetadata
from opsguard_core.utils import is_process_alive


def sleeper(ready):
    return py(f"import pathlib, time; pathlib.Path({str(ready)!r}).touch(); time.sleep(30)")


def old_lock(path, pid, age=600):
    path.mkdir()
    (path / METADATA_FILENAME).write_text(
        LockMetadata(pid=pid, created=int(time.time() - age), host="elsewhere").render()
    )
    past = time.time() - age
    os.utime(path, (past, past))


# =========================================================================
# Argument handling
# =========================================================================

class TestArguments:

    def test_split_command_keeps_inner_separator(self):
        head, tail = _split_command(["lock", "--lock-file", "x", "--", "git", "--", "path"])
        assert head == ["lock", "--lock-file", "x"]
        assert tail == ["git", "--", "path"]

    def test_split_without_separator(self):
        assert _split_command(["lock-status"]) == (["lock-status"], None)

    def test_version(self, capsys):
        assert main(["--version"]) == 0
        assert __version__ in capsys.readouterr().out

    @pytest.mark.parametrize(
        "argv",
        [
            ["lock", "--", "true"],
            ["lock", "--lock-file", "/tmp/opsguard-test.lock"],
            ["lock", "--lock-file", "/tmp/opsguard-test.lock", "--timeout", "-1", "--", "true"],
            ["timeout", "--", "true"],
            ["timeout", "--timeout", "0", "--", "true"],
            ["timeout", "--timeout", "1", "--signal", "BOGUS", "--", "true"],
            ["cleanup", "--", "true"],
            ["retry", "--attempts", "0", "--", "true"],
            ["retry", "--retry-on", "abc", "--", "true"],
        ],
    )
    def test_usage_errors_exit_2(self, argv):
        assert main(argv) == 2

    def test_unknown_flag_is_rejected_by_argparse(self):
        with pytest.raises(SystemExit) as excinfo:
            main(["timeout", "--bogus", "--", "true"])
        assert excinfo.value.code == 2

    def test_missing_config_file_is_a_usage_error(self, tmp_path):
        assert main(["--config", str(tmp_path / "nope.yaml"), "timeout", "--timeout", "1", "--", "true"]) == 2


# =========================================================================
# Subcommands in-process
# =========================================================================

class TestLockCommand:

    def test_runs_command_and_returns_its_code(self, tmp_path):
        lock_path = tmp_path / "deploy.lock"
        code = main(["lock", "--lock-file", str(lock_path), "--", *py("import sys; sys.exit(4)")])

        assert code == 4
        assert not lock_path.exists()

    def test_lock_timeout_exits_73(self, tmp_path):
        lock_path = tmp_path / "deploy.lock"
        old_lock(lock_path, pid=os.getpid(), age=0)

        code = main([
            "lock", "--lock-file", str(lock_path),
            "--timeout", "0.3", "--poll-interval", "0.05",
            "--", *py("pass"),
        ])

        assert code == 73
        assert lock_path.exists()

    def test_stale_lock_is_recovered(self, tmp_path, dead_pid):
        lock_path = tmp_path / "deploy.lock"
        old_lock(lock_path, pid=dead_pid)

        code = main(["lock", "--lock-file", str(lock_path), "--stale-after", "60", "--", *py("pass")])

        assert code == 0
        assert not lock_path.exists()

    def test_settings_from_config_file(self, tmp_path):
        lock_path = tmp_path / "deploy.lock"
        config = tmp_path / "opsguard.yaml"
        config.write_text(f"lock:\n  lock_file: {lock_path}\n  timeout: 0.2\n  poll_interval: 0.05\n")
        old_lock(lock_path, pid=os.getpid(), age=0)

        assert main(["--config", str(config), "lock", "--", *py("pass")]) == 73


class TestTimeoutCommand:

    def test_deadline_exceeded_exits_124(self):
        argv = ["timeout", "--timeout", "0.5", "--grace", "0", "--", *py("import time; time.sleep(30)")]
        assert main(argv) == 124

    def test_fast_command_code(self):
        assert main(["timeout", "--timeout", "10", "--", *py("import sys; sys.exit(6)")]) == 6


class TestCleanupCommand:

    def test_interleaved_cleanup_sources_unwind_in_reverse(self, tmp_path):
        out = tmp_path / "order.txt"
        cleanup_file = tmp_path / "cleanup.txt"
        cleanup_file.write_text(f"# from file\necho B >> {out}\necho C >> {out}\n")

        code = main([
            "cleanup",
            "--cleanup", f"echo A >> {out}",
            "--cleanup-file", str(cleanup_file),
            "--cleanup", f"echo D >> {out}",
            "--", *py("pass"),
        ])

        assert code == 0
        assert out.read_text().split() == ["D", "C", "B", "A"]

    def test_failed_cleanup_exits_70(self):
        assert main(["cleanup", "--cleanup", "false", "--", *py("pass")]) == 70

    def test_unreadable_cleanup_file(self, tmp_path):
        argv = ["cleanup", "--cleanup-file", str(tmp_path / "missing"), "--", *py("pass")]
        assert main(argv) == 2


class TestRetryCommand:

    def test_retries_until_success(self, tmp_path):
        counter = tmp_path / "count"
        code = (
            "import pathlib, sys\n"
            f"p = pathlib.Path({str(counter)!r})\n"
            "n = int(p.read_text()) + 1 if p.exists() else 1\n"
            "p.write_text(str(n))\n"
            "sys.exit(0 if n >= 2 else 75)\n"
        )

        assert main(["retry", "--attempts", "3", "--delay", "0", "--retry-on", "75", "--", *py(code)]) == 0
        assert counter.read_text() == "2"


class TestQuietSetting:
    """quiet can come from the flag, the environment or the config file."""

    @pytest.fixture(autouse=True)
    def _restore_levels(self):
        yield
        logging.getLogger("opsguard").setLevel(logging.NOTSET)
        logging.getLogger("opsguard_core").setLevel(logging.NOTSET)

    def run_lock(self, tmp_path, *extra):
        lock_path = tmp_path / "deploy.lock"
        return main(["lock", "--lock-file", str(lock_path), *extra, "--", *py("pass")])

    def test_progress_is_logged_by_default(self, tmp_path, caplog):
        assert self.run_lock(tmp_path) == 0
        assert "[FileLock] acquired lock" in caplog.text

    def test_quiet_flag(self, tmp_path, caplog):
        assert self.run_lock(tmp_path, "--quiet") == 0
        assert "[FileLock]" not in caplog.text

    def test_quiet_from_environment(self, tmp_path, caplog, monkeypatch):
        monkeypatch.setenv("OPSGUARD_LOCK_QUIET", "true")

        assert self.run_lock(tmp_path) == 0
        assert "[FileLock]" not in caplog.text

    def test_quiet_from_config_file(self, tmp_path, caplog):
        config = tmp_path / "opsguard.yaml"
        config.write_text("deadline:\n  quiet: true\nretry:\n  quiet: true\n")

        argv = ["--config", str(config), "timeout", "--timeout", "0.3", "--grace", "0",
                "--", *py("import time; time.sleep(30)")]
        assert main(argv) == 124
        assert "[Deadline]" not in caplog.text

        argv = ["--config", str(config), "retry", "--attempts", "2", "--delay", "0",
                "--", *py("import sys; sys.exit(3)")]
        assert main(argv) == 3
        assert "[Retry]" not in caplog.text

    def test_quiet_lock_still_reports_timeout(self, tmp_path, caplog, monkeypatch):
        monkeypatch.setenv("OPSGUARD_LOCK_QUIET", "1")
        lock_path = tmp_path / "deploy.lock"
        old_lock(lock_path, pid=os.getpid(), age=0)

        code = main(["lock", "--lock-file", str(lock_path), "--timeout", "0.2",
                     "--poll-interval", "0.05", "--", *py("pass")])

        assert code == 73
        assert "[FileLock]" not in caplog.text
        assert "timed out waiting for lock" in caplog.text


class TestLockStatusCommand:

    def test_json_for_free_lock(self, tmp_path, capsys):
        lock_path = tmp_path / "deploy.lock"
        assert main(["lock-status", "--lock-file", str(lock_path), "--json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["exists"] is False

    def test_json_for_stale_lock(self, tmp_path, dead_pid, capsys):
        lock_path = tmp_path / "deploy.lock"
        old_lock(lock_path, pid=dead_pid)

        assert main(["lock-status", "--lock-file", str(lock_path), "--stale-after", "60", "--json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["metadata"]["pid"] == dead_pid
        assert data["stale"] is True
        assert lock_path.exists()

    def test_table(self, tmp_path, capsys):
        lock_path = tmp_path / "deploy.lock"
        old_lock(lock_path, pid=os.getpid())

        assert main(["lock-status", "--lock-file", str(lock_path)]) == 0
        assert "Owner PID" in capsys.readouterr().out


# =========================================================================
# Real processes and real signals
# =========================================================================

class TestProcesses:
    """Run the CLI as separate processes the way shell scripts do."""

    def test_sigterm_releases_lock(self, tmp_path):
        lock_path = tmp_path / "deploy.lock"
        ready = tmp_path / "ready"
        proc = subprocess.Popen(
            cli("lock", "--lock-file", str(lock_path), "--", *sleeper(ready)),
            env=cli_env(),
        )
        try:
            wait_for_path(ready)
            assert lock_path.is_dir()
            proc.send_signal(signal.SIGTERM)
            assert proc.wait(timeout=10) == 128 + signal.SIGTERM
        finally:
            if proc.poll() is None:
                proc.kill()

        assert not lock_path.exists()

    def test_sigterm_runs_cleanup_in_reverse_once(self, tmp_path):
        out = tmp_path / "order.txt"
        ready = tmp_path / "ready"
        proc = subprocess.Popen(
            cli(
                "cleanup",
                "--cleanup", f"echo A >> {out}",
                "--cleanup", f"echo B >> {out}",
                "--cleanup", f"echo C >> {out}",
                "--", *sleeper(ready),
            ),
            env=cli_env(),
        )
        try:
            wait_for_path(ready)
            proc.send_signal(signal.SIGTERM)
            proc.send_signal(signal.SIGTERM)
            assert proc.wait(timeout=10) == 128 + signal.SIGTERM
        finally:
            if proc.poll() is None:
                proc.kill()

        assert out.read_text().split() == ["C", "B", "A"]

    def test_concurrent_invocations_are_serialized(self, tmp_path):
        lock_path = tmp_path / "deploy.lock"
        journal = tmp_path / "journal.txt"
        body = (
            "import time\n"
            f"with open({str(journal)!r}, 'a') as f:\n"
            "    f.write('start\\n'); f.flush()\n"
            "    time.sleep(0.2)\n"
            "    f.write('end\\n')\n"
        )
        procs = [
            subprocess.Popen(
                cli("lock", "--lock-file", str(lock_path), "--poll-interval", "0.02", "--", *py(body)),
                env=cli_env(),
            )
            for _ in range(3)
        ]
        try:
            codes = [p.wait(timeout=30) for p in procs]
        finally:
            for p in procs:
                if p.poll() is None:
                    p.kill()

        assert codes == [0, 0, 0]
        assert journal.read_text().split() == ["start", "end"] * 3
        assert not lock_path.exists()

    def test_signal_while_waiting_leaves_other_owner_lock(self, tmp_path):
        lock_path = tmp_path / "deploy.lock"
        old_lock(lock_path, pid=os.getpid(), age=0)
        ran = tmp_path / "ran"
        proc = subprocess.Popen(
            cli("lock", "--lock-file", str(lock_path), "--poll-interval", "0.05",
                "--", *py(f"import pathlib; pathlib.Path({str(ran)!r}).touch()")),
            env=cli_env(),
            stderr=subprocess.PIPE,
            text=True,
        )
        try:
            for line in proc.stderr:
                if "waiting for lock" in line:
                    break
            proc.send_signal(signal.SIGINT)
            proc.communicate(timeout=10)
        finally:
            if proc.poll() is None:
                proc.kill()

        assert proc.returncode == 128 + signal.SIGINT
        assert lock_path.is_dir()
        assert LockMetadata.read(lock_path).pid == os.getpid()
        assert not ran.exists()

    @pytest.mark.parametrize(
        "subcommand",
        [
            ["timeout", "--timeout", "30"],
            ["retry", "--attempts", "3", "--delay", "0"],
        ],
    )
    def test_ctrl_c_exits_130_without_traceback(self, tmp_path, subcommand):
        ready = tmp_path / "ready"
        child = py(
            "import os, pathlib, time\n"
            f"pathlib.Path({str(ready)!r}).write_text(str(os.getpid()))\n"
            "time.sleep(30)\n"
        )
        proc = subprocess.Popen(
            cli(*subcommand, "--", *child),
            env=cli_env(),
            stderr=subprocess.PIPE,
            text=True,
        )
        try:
            wait_for_path(ready)
            while not ready.read_text():
                time.sleep(0.02)
            child_pid = int(ready.read_text())
            proc.send_signal(signal.SIGINT)
            _, stderr = proc.communicate(timeout=10)
        finally:
            if proc.poll() is None:
                proc.kill()

        assert proc.returncode == 128 + signal.SIGINT
        assert "Traceback" not in stderr

        deadline = time.monotonic() + 5
        while is_process_alive(child_pid) and time.monotonic() < deadline:
            time.sleep(0.05)
        assert not is_process_alive(child_pid)
