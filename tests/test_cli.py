"""
Integration tests for syncpair CLI behaviour and config loading.
Author: Younes Rahimi

Tests:
  - project discovery: searching parent directories upward
  - config loading: global defaults under the project file, user@host, local mode
  - syncpair init: arity, refusing to re-initialise, dry-run, valid YAML
  - exit codes of log / sync / unlock for the states a scheduler can meet
"""
import os
import shutil
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

import yaml


# ── Helpers ───────────────────────────────────────────────────────────────────

REPO_ROOT = Path(__file__).parent.parent


def run_syncpair(*args, cwd=None, xdg=None):
    """Run the syncpair CLI and return (returncode, stdout, stderr)."""
    env = {**os.environ, "PYTHONPATH": str(REPO_ROOT)}
    if xdg is not None:
        env["XDG_CONFIG_HOME"] = str(xdg)
    result = subprocess.run(
        [sys.executable, "-m", "syncpair", *args],
        cwd=str(cwd or REPO_ROOT),
        capture_output=True,
        text=True,
        env=env,
    )
    return result.returncode, result.stdout, result.stderr


class CLITestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        base = Path(self.tmpdir.name)
        self.cwd = base / "local"
        self.remote = base / "remote"
        self.xdg = base / "xdg"
        self.cwd.mkdir()
        self.remote.mkdir()

    def tearDown(self):
        self.tmpdir.cleanup()

    def run_cli(self, *args):
        return run_syncpair(*args, cwd=self.cwd, xdg=self.xdg)

    def init_local(self):
        rc, out, err = self.run_cli("init", "-", str(self.remote))
        self.assertEqual(rc, 0, msg=f"stderr: {err}")


# ── Tests: project discovery ──────────────────────────────────────────────────

class TestFindProjectRoot(unittest.TestCase):
    """Tests for find_project_root() — upward search through parent directories."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name).resolve()

    def tearDown(self):
        self.tmpdir.cleanup()

    def _init(self, directory: Path):
        (directory / ".syncpair").mkdir(parents=True)
        (directory / ".syncpair" / "config.yaml").write_text("remote_path: /x\n", encoding="utf-8")

    def test_find_in_same_directory(self):
        from syncpair.config import find_project_root
        self._init(self.root)
        self.assertEqual(find_project_root(self.root), self.root)

    def test_find_in_parent_directory(self):
        from syncpair.config import find_project_root
        self._init(self.root)
        subdir = self.root / "a" / "b" / "c"
        subdir.mkdir(parents=True)
        self.assertEqual(find_project_root(subdir), self.root)

    def test_finds_nearest(self):
        from syncpair.config import find_project_root
        self._init(self.root)
        self._init(self.root / "a")
        deep = self.root / "a" / "b"
        deep.mkdir()
        self.assertEqual(find_project_root(deep), self.root / "a")

    def test_control_dir_without_config_does_not_count(self):
        from syncpair.config import find_project_root
        (self.root / "x" / ".syncpair").mkdir(parents=True)
        result = find_project_root(self.root / "x")
        self.assertNotEqual(result, self.root / "x")


# ── Tests: config loading ─────────────────────────────────────────────────────

class TestLoadConfig(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name).resolve()
        self._xdg = os.environ.get("XDG_CONFIG_HOME")
        os.environ["XDG_CONFIG_HOME"] = str(self.root / "xdg")

    def tearDown(self):
        if self._xdg is None:
            os.environ.pop("XDG_CONFIG_HOME", None)
        else:
            os.environ["XDG_CONFIG_HOME"] = self._xdg
        self.tmpdir.cleanup()

    def _write_project(self, content):
        (self.root / ".syncpair").mkdir(exist_ok=True)
        (self.root / ".syncpair" / "config.yaml").write_text(content, encoding="utf-8")

    def test_remote_host_with_user(self):
        from syncpair.config import load_config
        self._write_project("host: 'bob@myhost.example.com'\nremote_path: 'sync/notes'\nport: 2222\n")
        cfg = load_config(self.root)
        self.assertTrue(cfg.is_remote)
        self.assertEqual(cfg.user, "bob")
        self.assertEqual(cfg.host, "myhost.example.com")
        self.assertEqual(cfg.port, 2222)
        self.assertEqual(cfg.remote_location, "bob@myhost.example.com:sync/notes")
        self.assertEqual(cfg.remote_lock, "sync/notes/.syncpair/lock")

    def test_local_mode_relative_path(self):
        from syncpair.config import load_config
        self._write_project("host: '-'\nremote_path: '../mirror'\n")
        cfg = load_config(self.root)
        self.assertFalse(cfg.is_remote)
        self.assertEqual(Path(cfg.remote_root), self.root / "../mirror")

    def test_global_defaults_under_project(self):
        from syncpair.config import load_config
        xdg = self.root / "xdg" / "syncpair"
        xdg.mkdir(parents=True)
        (xdg / "config.yaml").write_text(
            "defaults:\n"
            "  slow_sync_time: 5\n"
            "  slow_sync_start_cmd: notify-send start\n"
            "  port: 2200\n",
            encoding="utf-8",
        )
        self._write_project("host: h\nremote_path: /r\nport: 2222\n")
        cfg = load_config(self.root)
        self.assertEqual(cfg.slow_sync_time, 5)
        self.assertEqual(cfg.slow_sync_start_cmd, "notify-send start")
        self.assertEqual(cfg.port, 2222)

    def test_missing_remote_path_is_setup_error(self):
        from syncpair.config import load_config
        from syncpair.errors import SetupError
        self._write_project("host: h\n")
        with self.assertRaises(SetupError):
            load_config(self.root)

    def test_local_mode_rejects_nested_replicas(self):
        from syncpair.config import build_config
        from syncpair.errors import SetupError
        (self.root / "outer" / "inner").mkdir(parents=True)
        cases = [
            (self.root / "outer", "backup"),
            (self.root / "outer", "."),
            (self.root / "outer", str(self.root / "outer" / "inner")),
            (self.root / "outer" / "inner", ".."),
        ]
        for local, remote in cases:
            with self.assertRaises(SetupError, msg=f"{local} / {remote}"):
                build_config(local, {"host": "-", "remote_path": remote})
        cfg = build_config(self.root / "outer", {"host": "-", "remote_path": "../mirror"})
        self.assertFalse(cfg.is_remote)

    def test_config_is_immutable(self):
        import dataclasses
        from syncpair.config import load_config
        self._write_project("host: h\nremote_path: /r\n")
        cfg = load_config(self.root)
        with self.assertRaises(dataclasses.FrozenInstanceError):
            cfg.host = "other"


# ── Tests: syncpair init ──────────────────────────────────────────────────────

class TestInitCommand(CLITestCase):

    def test_init_creates_control_dir(self):
        rc, out, err = self.run_cli("init", "me@myhost.com", "projects/test")
        self.assertEqual(rc, 0, msg=f"stderr: {err}")
        config_file = self.cwd / ".syncpair" / "config.yaml"
        self.assertTrue(config_file.exists())
        self.assertTrue((self.cwd / ".syncpair" / "exclude").exists())
        data = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        self.assertEqual(data["host"], "me@myhost.com")
        self.assertEqual(data["remote_path"], "projects/test")

    def test_init_wrong_arity(self):
        for args in (("init",), ("init", "host"), ("init", "a", "b", "c")):
            rc, out, err = self.run_cli(*args)
            self.assertEqual(rc, 128, msg=f"{args}: {err}")
        self.assertFalse((self.cwd / ".syncpair").exists())

    def test_init_refuses_reinitialise(self):
        self.init_local()
        rc, out, err = self.run_cli("init", "other", "path")
        self.assertEqual(rc, 128)
        self.assertIn("already initialised", err)

    def test_init_rejects_local_replica_inside_this_one(self):
        rc, out, err = self.run_cli("init", "-", "backup")
        self.assertEqual(rc, 128)
        self.assertIn("overlap", err)
        self.assertFalse((self.cwd / ".syncpair").exists())

    def test_init_dry_run_does_not_write(self):
        rc, out, err = self.run_cli("init", "myhost.com", "p", "--dry-run")
        self.assertEqual(rc, 0, msg=f"stderr: {err}")
        self.assertFalse((self.cwd / ".syncpair").exists())
        self.assertIn("dry-run", out)


# ── Tests: exit codes ─────────────────────────────────────────────────────────

class TestExitCodes(CLITestCase):

    def test_usage_errors_exit_128(self):
        for args in (("bogus",), ("log", "-n", "x"), ("--no-such-flag",)):
            rc, out, err = self.run_cli(*args)
            self.assertEqual(rc, 128, msg=f"{args}: {err}")
            self.assertIn("usage:", err)

    def test_log_uninitialised(self):
        rc, out, err = self.run_cli("log")
        self.assertEqual(rc, 128)
        self.assertIn("not initialised", err)

    def test_sync_uninitialised(self):
        rc, out, err = self.run_cli()
        self.assertEqual(rc, 128)

    def test_log_shows_tail(self):
        self.init_local()
        (self.cwd / ".syncpair" / "log").write_text(
            "".join(f"line {i}\n" for i in range(30)), encoding="utf-8")
        rc, out, err = self.run_cli("log", "-n", "3")
        self.assertEqual(rc, 0, msg=err)
        self.assertEqual(out.splitlines(), ["line 27", "line 28", "line 29"])

    def test_stale_lock_exit_code_and_unlock(self):
        self.init_local()
        lock = self.cwd / ".syncpair" / "lock"
        # a PID far above any pid_max
        lock.write_text("4194305\n", encoding="utf-8")
        rc, out, err = self.run_cli("sync")
        self.assertEqual(rc, 2, msg=err)
        self.assertIn("stale lock", err)
        self.assertFalse((self.remote / ".syncpair" / "lock").exists())

        rc, out, err = self.run_cli("unlock")
        self.assertEqual(rc, 0, msg=err)
        self.assertFalse(lock.exists())

    def test_remote_lock_busy_exit_code(self):
        self.init_local()
        (self.remote / ".syncpair" / "lock").mkdir(parents=True)
        rc, out, err = self.run_cli()
        self.assertEqual(rc, 3, msg=err)
        self.assertFalse((self.cwd / ".syncpair" / "lock").exists())

    def test_live_lock_exit_code(self):
        self.init_local()
        (self.cwd / ".syncpair" / "lock").write_text(f"{os.getpid()}\n", encoding="utf-8")
        rc, out, err = self.run_cli()
        self.assertEqual(rc, 1, msg=err)

    @unittest.skipUnless(shutil.which("rsync"), "rsync not installed")
    def test_cron_writes_log(self):
        self.init_local()
        (self.cwd / "a.txt").write_text("a", encoding="utf-8")
        rc, out, err = self.run_cli("cron")
        self.assertEqual(rc, 0, msg=err)
        self.assertEqual(out, "")
        log = (self.cwd / ".syncpair" / "log").read_text(encoding="utf-8")
        self.assertIn("[outgoing] done", log)
        self.assertEqual((self.remote / "a.txt").read_text(encoding="utf-8"), "a")

    @unittest.skipUnless(shutil.which("rsync"), "rsync not installed")
    def test_status_after_sync(self):
        self.init_local()
        (self.cwd / "a.txt").write_text("a", encoding="utf-8")
        rc, out, err = self.run_cli("sync")
        self.assertEqual(rc, 0, msg=err)
        (self.cwd / "a.txt").unlink()
        (self.cwd / "b.txt").write_text("b", encoding="utf-8")
        rc, out, err = self.run_cli("status")
        self.assertEqual(rc, 0, msg=err)
        self.assertIn("Created : 1", out)
        self.assertIn("Deleted : 1", out)
        self.assertIn("No sync running.", out)


if __name__ == "__main__":
    unittest.main()
