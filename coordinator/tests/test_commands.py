"""Tests for command risk validation and CommandRunner."""

import pytest

from coordinator.commands import CommandRunner, validate_command
from coordinator.memory import InMemoryStore
from coordinator.models import CommandOperation


class TestValidateCommand:
    def test_plain_command_only_lacks_working_directory(self):
        validation = validate_command(CommandOperation("ls -la"))
        assert validation.is_valid
        assert [r.level for r in validation.risks] == ["low"]

    def test_working_directory_removes_low_risk(self, tmp_path):
        validation = validate_command(CommandOperation("ls", working_directory=str(tmp_path)))
        assert validation.risks == []

    def test_network_access_is_medium(self):
        validation = validate_command(CommandOperation("curl https://example.com", working_directory="/tmp"))
        assert [r.level for r in validation.risks] == ["medium"]
        assert validation.is_valid

    def test_sudo_is_high_with_alternative(self):
        validation = validate_command(CommandOperation("sudo apt update", working_directory="/tmp"))
        assert validation.is_valid
        assert validation.has_level("high")
        assert validation.alternative_commands == ["apt update"]
        assert validation.suggestions

    @pytest.mark.parametrize(
        "command",
        ["rm -rf /", "dd if=/dev/zero of=/dev/sda", "mkfs.ext4 /dev/sdb", "echo x > /dev/sda"],
    )
    def test_destructive_commands_are_critical(self, command):
        validation = validate_command(CommandOperation(command, working_directory="/tmp"))
        assert not validation.is_valid
        assert validation.has_level("critical")

    def test_rm_inside_directory_is_allowed(self):
        assert validate_command(CommandOperation("rm -rf ./build", working_directory="/tmp")).is_valid


class TestCommandRunner:
    def test_runs_command_and_logs(self, tmp_path):
        memory = InMemoryStore()
        result = CommandRunner(memory).run(CommandOperation("echo hello", working_directory=str(tmp_path)))
        assert result.success
        assert result.exit_code == 0
        assert result.stdout.strip() == "hello"
        assert memory.terminal_logs[0]["command"] == "echo hello"

    def test_unexpected_exit_code_is_failure(self, tmp_path):
        result = CommandRunner().run(CommandOperation("exit 3", working_directory=str(tmp_path)))
        assert not result.success
        assert result.exit_code == 3

    def test_expected_exit_code(self, tmp_path):
        op = CommandOperation("exit 3", working_directory=str(tmp_path), expected_exit_code=3)
        assert CommandRunner().run(op).success

    def test_environment_is_passed(self, tmp_path):
        op = CommandOperation(
            "echo $GREETING",
            working_directory=str(tmp_path),
            environment={"GREETING": "hi"},
        )
        assert CommandRunner().run(op).stdout.strip() == "hi"

    def test_critical_command_refused(self):
        memory = InMemoryStore()
        result = CommandRunner(memory).run(CommandOperation("rm -rf /", working_directory="/tmp"))
        assert not result.success
        assert result.exit_code is None
        assert "rejected" in result.stderr
        assert memory.terminal_logs[0]["exit_code"] is None

    def test_sudo_refused_unless_allowed(self):
        result = CommandRunner().run(CommandOperation("sudo true", working_directory="/tmp"))
        assert not result.success
        assert "elevated" in result.stderr

    def test_timeout(self, tmp_path):
        op = CommandOperation("sleep 5", working_directory=str(tmp_path), timeout=0.2)
        result = CommandRunner().run(op)
        assert not result.success
        assert "timed out" in result.stderr
