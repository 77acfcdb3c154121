"""Unit tests for the CLI — Typer command registration and basic behavior."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from obake.cli.app import app
from obake.logs import LogLevel, current_config, reset_logging

runner = CliRunner()

RECIPE = """
name = "demo"
version = "1.0"
entrypoint = "/usr/local/bin/hello"
artifacts = ["/usr/local/bin/hello"]

[reference]
kind = "tarball"
url = "{url}"
sha256 = "{sha256}"

[[build_steps]]
name = "compile"
run = '''{compile}'''

[[bindings]]
name = "shm"
host_path = "/dev/shm"
feature = "shared memory transport"
"""

HOST_CONFIG = """
[audio]
default-interface = "scarlett"

[audio.interfaces.scarlett]
type = "usb"
unit = "jack@scarlett.service"

[audio.interfaces.onboard]
type = "pci"

[data]
images-dir = "{root}/images"
setups-dir = "{root}/setups"
data-dir = "{root}/data"
"""


@pytest.fixture
def cli_env(clean_env, tmp_path, recipe_data):
    """Environment pointing the CLI at temporary shapes, images and host config."""
    shapes = tmp_path / "shapes"
    shapes.mkdir()
    (shapes / "demo.toml").write_text(
        RECIPE.format(
            url=recipe_data["reference"]["url"],
            sha256=recipe_data["reference"]["sha256"],
            compile=recipe_data["build_steps"][0]["run"],
        )
    )
    config = tmp_path / "config.toml"
    config.write_text(HOST_CONFIG.format(root=tmp_path))

    clean_env.setenv("OBAKE_SHAPES_DIR", str(shapes))
    clean_env.setenv("OBAKE_CONFIG_FILE", str(config))
    clean_env.setenv("OBAKE_WORK_DIR", str(tmp_path / "work"))
    clean_env.setenv("OBAKE_CACHE_DIR", str(tmp_path / "cache"))
    return tmp_path


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected command groups and show help."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "Usage" in result.output

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for group in ("shape", "unit", "setup", "interface"):
            assert group in result.output

    @pytest.mark.parametrize(
        "args",
        [
            ["shape", "list", "--help"],
            ["shape", "show", "--help"],
            ["shape", "plan", "--help"],
            ["shape", "build", "--help"],
            ["unit", "start", "--help"],
            ["unit", "stop", "--help"],
            ["setup", "start", "--help"],
            ["setup", "stop", "--help"],
            ["setup", "list", "--help"],
            ["interface", "list", "--help"],
        ],
    )
    def test_command_exists(self, args):
        result = runner.invoke(app, args)
        assert result.exit_code == 0, result.output

    def test_invalid_log_level(self):
        result = runner.invoke(app, ["--log-level", "loud", "interface", "list"])
        assert result.exit_code == 2
        assert current_config() is None

    def test_log_level_from_env(self, cli_env, monkeypatch):
        monkeypatch.setenv("OBAKE_LOG_LEVEL", "debug")
        result = runner.invoke(app, ["interface", "list"])
        assert result.exit_code == 0, result.output
        assert current_config().level == LogLevel.DEBUG


# ---------------------------------------------------------------------------
# Test: shape commands
# ---------------------------------------------------------------------------


class TestShapeCommands:
    def test_show(self, cli_env):
        result = runner.invoke(app, ["shape", "show", "demo"])
        assert result.exit_code == 0, result.output
        assert "/usr/local/bin/hello" in result.output
        assert "compile" in result.output
        assert "/dev/shm" in result.output

    def test_show_unknown(self, cli_env):
        result = runner.invoke(app, ["shape", "show", "nope"])
        assert result.exit_code == 1
        assert "Unknown shape" in result.output
        assert "demo" in result.output

    def test_plan_runs_nothing(self, cli_env):
        result = runner.invoke(app, ["shape", "plan", "demo"])
        assert result.exit_code == 0, result.output
        assert "fetch" in result.output
        assert "select" in result.output
        assert not (cli_env / "work").exists()

    def test_build_then_list(self, cli_env):
        result = runner.invoke(app, ["shape", "build", "demo"])
        assert result.exit_code == 0, result.output
        assert (cli_env / "images" / "demo-1.0" / "rootfs" / "usr/local/bin/hello").is_file()

    def test_rebuild_fails(self, cli_env):
        assert runner.invoke(app, ["shape", "build", "demo"]).exit_code == 0
        reset_logging()
        result = runner.invoke(app, ["shape", "build", "demo"])
        assert result.exit_code == 1

    def test_build_needs_names(self, cli_env):
        result = runner.invoke(app, ["shape", "build"])
        assert result.exit_code == 1
        assert "Nothing to build" in result.output

    def test_list_without_images(self, cli_env):
        result = runner.invoke(app, ["shape", "list"])
        assert result.exit_code == 1
        assert "Error" in result.output


# ---------------------------------------------------------------------------
# Test: host commands
# ---------------------------------------------------------------------------


class TestHostCommands:
    def test_interface_list(self, cli_env):
        result = runner.invoke(app, ["interface", "list"])
        assert result.exit_code == 0, result.output
        assert "scarlett" in result.output
        assert "onboard" in result.output

    def test_interface_list_without_config(self, clean_env, tmp_path):
        clean_env.setenv("OBAKE_CONFIG_FILE", str(tmp_path / "missing.toml"))
        result = runner.invoke(app, ["interface", "list"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_setup_list(self, cli_env):
        setups = cli_env / "setups"
        setups.mkdir()
        (setups / "live.toml").write_text('[setup]\ninterface = "scarlett"\nshapes = ["demo"]\n')
        result = runner.invoke(app, ["setup", "list"])
        assert result.exit_code == 0, result.output
        assert "live" in result.output

    def test_setup_start_unknown_interface(self, cli_env):
        setup = cli_env / "bad.toml"
        setup.write_text('[setup]\ninterface = "usb-9000"\n')
        result = runner.invoke(app, ["setup", "start", "--file", str(setup)])
        assert result.exit_code == 1
        assert "usb-9000" in result.output

    def test_setup_missing_file(self, cli_env):
        result = runner.invoke(app, ["setup", "stop", "-f", str(cli_env / "absent.toml")])
        assert result.exit_code == 1
