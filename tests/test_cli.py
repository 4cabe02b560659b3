"""Tests for command-line parsing and the entry point."""

import os
import tempfile
import pytest

# Add src to path
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from mlti.cli import build_parser, parse_config
from mlti.core.errors import ConfigError
from mlti.main import main


class TestParseConfig:
    """Test building a run config from argv."""

    def test_flags(self):
        config = parse_config([
            "-k",
            "--restart-tries", "2",
            "--restart-after", "50",
            "-m", "50%",
            "-n", "a,b",
            "echo a",
            "echo b",
        ])

        assert config.commands == ["echo a", "echo b"]
        assert config.names == ["a", "b"]
        assert config.kill_others
        assert config.retry.restart_tries == 2
        assert config.retry.restart_after_ms == 50
        assert config.max_processes == "50%"

    def test_output_flags(self):
        config = parse_config([
            "--raw", "--no-color", "--group", "--timings",
            "-p", "{index}", "-l", "3", "-t", "%H:%M",
            "echo",
        ])

        assert config.output.raw
        assert config.output.no_color
        assert config.output.group
        assert config.output.timings
        assert config.output.prefix == "{index}"
        assert config.output.prefix_length == 3
        assert config.output.timestamp_format == "%H:%M"

    def test_name_separator(self):
        config = parse_config(["--name-separator", "|", "-n", "x|y", "echo", "echo"])
        assert config.names == ["x", "y"]

    def test_defaults_without_flags(self):
        config = parse_config([])
        assert config.commands == []
        assert not config.kill_others
        assert config.retry.restart_tries == 0

    def test_unset_flags_not_in_namespace(self):
        args = vars(build_parser().parse_args(["echo"]))
        assert args == {"commands": ["echo"]}

    def test_config_file_with_overrides(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "mlti.yaml")
            with open(path, "w") as f:
                f.write("commands: [echo file]\nrestart-tries: 4\ngroup: true\n")

            config = parse_config(["--config", path, "--restart-tries", "1"])

        assert config.commands == ["echo file"]
        assert config.retry.restart_tries == 1
        assert config.output.group

    def test_command_line_commands_replace_file_commands(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "mlti.yaml")
            with open(path, "w") as f:
                f.write("commands: [echo file]\n")

            config = parse_config(["--config", path, "echo cli"])

        assert config.commands == ["echo cli"]

    def test_config_from_environment(self, monkeypatch):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "mlti.json")
            with open(path, "w") as f:
                f.write('{"commands": ["echo env"], "kill-others-on-fail": true}')

            monkeypatch.setenv("MLTI_CONFIG", path)
            config = parse_config([])

        assert config.commands == ["echo env"]
        assert config.kill_others_on_fail

    def test_success_terms_and_package_json(self):
        config = parse_config(["-s", "first", "--package-json", "web/package.json", "npm:build"])
        assert config.success_terms == "first"
        assert config.package_json == "web/package.json"

    def test_unknown_success_terms(self):
        with pytest.raises(SystemExit):
            parse_config(["--success-terms", "some"])

    def test_invalid_values(self):
        with pytest.raises(ConfigError):
            parse_config(["--restart-tries", "-1"])
        with pytest.raises(ConfigError):
            parse_config(["--kill-signal", "SIGBOGUS"])


class TestMain:
    """Test the async entry point."""

    @pytest.mark.asyncio
    async def test_config_error_exit_code(self, capsys):
        assert await main(["--kill-signal", "SIGBOGUS"]) == 2
        assert capsys.readouterr().err.startswith("mlti: ")

    @pytest.mark.asyncio
    async def test_bad_command_exit_code(self, capsys):
        assert await main(['echo "unclosed']) == 2
        assert "Could not parse command" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_no_commands(self, monkeypatch):
        monkeypatch.delenv("MLTI_CONFIG", raising=False)
        assert await main([]) == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
