"""Shell command tasks: risk checks and execution."""

from __future__ import annotations

import logging
import os
import re
import subprocess
import time
from dataclasses import dataclass, field
from typing import Optional

from .memory import MemoryStore
from .models import CommandOperation

_log = logging.getLogger(__name__)

_DESTRUCTIVE = (
    (re.compile(r"\brm\s+(-\w*r\w*f\w*|-\w*f\w*r\w*)\s+/(\s|$|\*)"), "Recursive deletion of the root filesystem"),
    (re.compile(r">\s*/dev/sd[a-z]"), "Direct write to a disk device"),
    (re.compile(r"\bdd\s+if="), "Raw disk copy with dd"),
    (re.compile(r"\bmkfs(\.\w+)?\s+/dev/sd[a-z]"), "Formatting a disk device"),
    (re.compile(r":\(\)\s*\{\s*:\|:&\s*\}\s*;\s*:"), "Fork bomb"),
    (re.compile(r"\bsudo\s+rm\s+.*--no-preserve-root"), "Deletion without root protection"),
)
_SUDO_RE = re.compile(r"(^|[;&|]\s*)sudo\b")
_NETWORK_RE = re.compile(r"\b(curl|wget|nc|netcat)\b")


@dataclass
class CommandRisk:
    level: str  # low | medium | high | critical
    description: str


@dataclass
class CommandValidation:
    is_valid: bool
    risks: list[CommandRisk] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    alternative_commands: list[str] = field(default_factory=list)

    def has_level(self, *levels: str) -> bool:
        return any(r.level in levels for r in self.risks)


@dataclass
class CommandResult:
    success: bool
    stdout: str
    stderr: str
    exit_code: Optional[int]
    duration: float
    command: str
    working_directory: Optional[str] = None


def validate_command(op: CommandOperation) -> CommandValidation:
    """Classify the risks of running *op*.  Invalid only with a critical risk."""
    risks = []
    if op.requires_sudo or _SUDO_RE.search(op.command):
        risks.append(CommandRisk("high", "Command runs with elevated privileges"))
    for pattern, description in _DESTRUCTIVE:
        if pattern.search(op.command):
            risks.append(CommandRisk("critical", description))
    if _NETWORK_RE.search(op.command):
        risks.append(CommandRisk("medium", "Command performs network access"))
    if not op.working_directory:
        risks.append(CommandRisk("low", "No working directory given; the current one is used"))

    validation = CommandValidation(
        is_valid=not any(r.level == "critical" for r in risks),
        risks=risks,
    )
    if validation.has_level("high", "critical"):
        validation.suggestions.append("Review the command carefully before running it")
        if "sudo" in op.command:
            validation.alternative_commands.append(_SUDO_RE.sub(r"\1", op.command).strip())
    return validation


class CommandRunner:
    """Runs validated commands and logs them to the memory store, if any."""

    def __init__(self, memory: Optional[MemoryStore] = None, allow_high_risk: bool = False) -> None:
        self._memory = memory
        self._allow_high_risk = allow_high_risk

    def run(self, op: CommandOperation) -> CommandResult:
        validation = validate_command(op)
        if not validation.is_valid or (
            validation.has_level("high") and not self._allow_high_risk
        ):
            reasons = "; ".join(
                r.description for r in validation.risks if r.level in ("high", "critical")
            )
            _log.warning("Refusing to run %r: %s", op.command, reasons)
            result = CommandResult(
                success=False,
                stdout="",
                stderr=f"command rejected: {reasons}",
                exit_code=None,
                duration=0.0,
                command=op.command,
                working_directory=op.working_directory,
            )
            self._log(result)
            return result

        env = {**os.environ, **op.environment}
        started = time.monotonic()
        try:
            proc = subprocess.run(
                op.command,
                shell=True,
                cwd=op.working_directory,
                env=env,
                capture_output=True,
                text=True,
                timeout=op.timeout,
            )
            result = CommandResult(
                success=proc.returncode == op.expected_exit_code,
                stdout=proc.stdout,
                stderr=proc.stderr,
                exit_code=proc.returncode,
                duration=time.monotonic() - started,
                command=op.command,
                working_directory=op.working_directory,
            )
        except subprocess.TimeoutExpired as exc:
            result = CommandResult(
                success=False,
                stdout=exc.stdout if isinstance(exc.stdout, str) else "",
                stderr=f"timed out after {op.timeout}s",
                exit_code=None,
                duration=time.monotonic() - started,
                command=op.command,
                working_directory=op.working_directory,
            )
        except OSError as exc:
            result = CommandResult(
                success=False,
                stdout="",
                stderr=str(exc),
                exit_code=None,
                duration=time.monotonic() - started,
                command=op.command,
                working_directory=op.working_directory,
            )
        self._log(result)
        return result

    def _log(self, result: CommandResult) -> None:
        if self._memory is not None:
            self._memory.add_terminal_log(
                result.command, result.stdout or result.stderr, result.exit_code
            )
