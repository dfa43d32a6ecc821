import logging
import shutil
import threading

import pytest
import toml
import yaml
from click.testing import CliRunner

from buildwatch import cli


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    logger = logging.getLogger("buildwatch")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def temp_config(tmp_path):
    config_data = {
        "watch": {"debounce_ms": 120, "ignore": ["**/*.tmp"]},
        "watch_groups": {"configs_dir": "watch_groups.yaml"},
    }
    config_file = tmp_path / "buildwatch.toml"
    with open(config_file, "w") as f:
        toml.dump(config_data, f)

    watch_groups_data = {
        "watch_groups": [
            {
                "name": "CLIGroup",
                "roots": [str(tmp_path)],
                "ignore": ["**/build/**"],
                "debounce_ms": 40,
            }
        ]
    }
    watch_groups_file = tmp_path / "watch_groups.yaml"
    with open(watch_groups_file, "w") as f:
        yaml.dump(watch_groups_data, f)

    return str(config_file)


@pytest.fixture
def no_config(tmp_path, monkeypatch):
    monkeypatch.delenv("BUILDWATCH_CONFIG_DIR", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_show_config(temp_config):
    runner = CliRunner()
    result = runner.invoke(cli.main, ["--config", temp_config, "show-config"])
    assert result.exit_code == 0
    assert "debounce_ms" in result.output
    assert "debounce_ms=120" in result.output


def test_show_config_without_file(no_config):
    runner = CliRunner()
    result = runner.invoke(cli.main, ["show-config"])
    assert result.exit_code == 0
    assert "No configuration loaded" in result.output


def test_missing_config_file(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli.main, ["--config", str(tmp_path / "nope.toml"), "show-config"])
    assert result.exit_code == 1
    assert "Error loading configuration" in result.output


def test_check_patterns(no_config):
    runner = CliRunner()
    result = runner.invoke(cli.main, [
        "check", "**/*.tmp", "build/**",
        "-p", "src/a.tmp", "-p", "src/main.c", "-p", "build/out.o",
    ])
    assert result.exit_code == 0
    assert "2 pattern(s) compiled." in result.output
    assert "Ignore Check" in result.output
    assert "yes" in result.output
    assert "no" in result.output


def test_check_invalid_pattern(no_config):
    runner = CliRunner()
    result = runner.invoke(cli.main, ["check", "{unclosed"])
    assert result.exit_code == 2
    assert "Invalid pattern" in result.output


def test_groups(temp_config):
    runner = CliRunner()
    result = runner.invoke(cli.main, ["--config", temp_config, "groups"])
    assert result.exit_code == 0
    assert "CLIGroup" in result.output
    assert "40" in result.output


def test_groups_missing_file(no_config):
    runner = CliRunner()
    result = runner.invoke(cli.main, ["groups"])
    assert result.exit_code == 1
    assert "Error loading watch groups configuration" in result.output


def test_watch_missing_root(no_config):
    runner = CliRunner()
    result = runner.invoke(cli.main, ["watch", str(no_config / "missing")])
    assert result.exit_code == 2
    assert "Error" in result.output


def test_watch_unknown_group(temp_config):
    runner = CliRunner()
    result = runner.invoke(cli.main, ["--config", temp_config, "watch", "-g", "nope"])
    assert result.exit_code == 1
    assert "Unknown watch group" in result.output


def test_watch_nothing_to_watch(no_config):
    runner = CliRunner()
    result = runner.invoke(cli.main, ["watch"])
    assert result.exit_code == 1
    assert "Nothing to watch" in result.output


def test_watch_exits_when_root_is_deleted(tmp_path, no_config):
    root = tmp_path / "proj"
    root.mkdir()
    timer = threading.Timer(0.5, shutil.rmtree, args=(str(root),))
    timer.start()

    runner = CliRunner()
    try:
        result = runner.invoke(cli.main, ["watch", str(root), "--debounce-ms", "20", "--lookback", "0"])
    finally:
        timer.cancel()
    assert result.exit_code == 1
