"""Tests for the command line entry point."""

import json
import logging

import pytest

from ohmyccg.cli import main
from ohmyccg.rpi.engine import RpiEngine


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _output(capsys):
    return json.loads(capsys.readouterr().out)


class TestCli:
    def test_list_tools(self, capsys, workdir):
        assert main(["--work-dir", str(workdir), "list-tools"]) == 0

        names = {schema["name"] for schema in _output(capsys)}
        assert {"wait_for_job", "rpi_transition", "hud_state_read"} <= names

    def test_call_success(self, capsys, workdir):
        RpiEngine(workdir).init("add-login")

        code = main(["--work-dir", str(workdir), "call", "rpi_transition", "--args", '{"target": "research"}'])

        assert code == 0
        assert _output(capsys)["phase"] == "research"

    def test_call_failure(self, capsys, workdir):
        assert main(["--work-dir", str(workdir), "call", "rpi_state_read"]) == 1
        assert _output(capsys) == {"error": "No RPI state found"}

    def test_bad_args_json(self, capsys, workdir):
        assert main(["--work-dir", str(workdir), "call", "list_jobs", "--args", "{nope"]) == 2
        assert _output(capsys)["error"].startswith("Invalid --args JSON")

    def test_no_command(self, capsys):
        assert main([]) == 1
