"""Tests for the px-thin-recover command line."""

import json
import subprocess
import sys

import pytest

from conftest import PROJECT_ROOT, completed, lvm_world
from pxtools import __version__
from pxtools.cli import create_parser, main


def run_cli(*args):
    return subprocess.run(
        [sys.executable, "-m", "pxtools", *args],
        capture_output=True,
        text=True,
        cwd=PROJECT_ROOT,
    )


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """Config that keeps logs inside tmp_path and ignores the user's own config."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    path = tmp_path / "config.yaml"
    path.write_text(f"log_dir: {tmp_path / 'logs'}\n")
    return path


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self):
        args = create_parser().parse_args(["pwx2"])
        assert args.vg_name == "pwx2"
        assert args.yes is False
        assert args.config is None

    def test_yes_flag(self):
        assert create_parser().parse_args(["pwx2", "-y"]).yes is True
        assert create_parser().parse_args(["--yes", "pwx2"]).yes is True


class TestModuleEntryPoint:
    """Tests running python -m pxtools."""

    def test_help(self):
        result = run_cli("--help")
        assert result.returncode == 0
        assert "px-thin-recover" in result.stdout
        assert "maintenance mode" in result.stdout

    def test_version(self):
        result = run_cli("--version")
        assert result.returncode == 0
        assert result.stdout.strip() == f"px-thin-recover {__version__}"

    def test_missing_vg(self):
        result = run_cli()
        assert result.returncode == 1
        assert "vg_name is required" in result.stderr


class TestMain:
    """Tests for main() with a mocked node."""

    def test_missing_vg_returns_one(self, capsys):
        assert main([]) == 1
        assert "usage:" in capsys.readouterr().err

    def test_bad_config(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("HOME", str(tmp_path))
        bad = tmp_path / "bad.yaml"
        bad.write_text("lvm_timout: 30\n")

        assert main(["pwx2", "--config", str(bad)]) == 1
        assert "Unknown config key 'lvm_timout'" in capsys.readouterr().err

    def test_healthy_pool(self, config_file, tmp_path):
        """A healthy pool exits 0 and the run is logged."""
        ctx = lvm_world()
        ctx.command_outputs[("vgchange", "-ay", "pwx2")] = completed(0)

        assert main(["pwx2", "--config", str(config_file)], context=ctx) == 0

        [log] = list((tmp_path / "logs").glob("*/thin_pool_recovery.jsonl"))
        entries = [json.loads(line) for line in log.read_text().splitlines()]
        assert entries[0]["message"] == "Recovery started"
        assert entries[0]["vg"] == "pwx2"
        assert entries[-1]["exit_code"] == 0

    def test_full_recovery_with_yes(self, config_file):
        ctx = lvm_world()
        assert main(["pwx2", "-y", "--config", str(config_file)], context=ctx) == 0
        assert ctx.ran("thin_repair")

    def test_operator_declines(self, config_file):
        """Answering no at the first prompt exits 0 without changes."""
        ctx = lvm_world()
        replies = iter(["n"])

        code = main(["pwx2", "--config", str(config_file)], context=ctx, read=lambda: next(replies))

        assert code == 0
        assert not ctx.ran("vgchange", "-an")

    def test_closed_stdin_never_writes(self, config_file):
        """End of input declines, so nothing destructive happens."""
        ctx = lvm_world()

        def read():
            raise EOFError

        assert main(["pwx2", "--config", str(config_file)], context=ctx, read=read) == 0
        assert not ctx.ran("dd")
