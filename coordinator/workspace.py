"""File operations against a workspace directory, with byte-exact rollback."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from .models import FileEdit, FileOperation, OperationType

_log = logging.getLogger(__name__)


class WorkspaceError(Exception):
    """A file operation could not be applied."""


@dataclass
class Snapshot:
    """Raw bytes of each captured path, or ``None`` where nothing existed."""

    files: dict[Path, Optional[bytes]] = field(default_factory=dict)
    directories: set[Path] = field(default_factory=set)


def _apply_edits(text: str, edits: list[FileEdit]) -> str:
    lines = text.splitlines(keepends=True)
    for edit in sorted(edits, key=lambda e: e.start_line, reverse=True):
        start = max(edit.start_line, 1) - 1
        end = max(edit.end_line, start)
        if start > len(lines):
            start = end = len(lines)
        replaced = lines[start:end]
        if edit.old_content is not None and (
            "".join(replaced).rstrip("\n") != edit.old_content.rstrip("\n")
        ):
            raise WorkspaceError(
                f"lines {edit.start_line}-{edit.end_line} do not match the expected content"
            )
        replacement = edit.new_content.splitlines(keepends=True)
        keep_newline = end < len(lines) or (replaced and replaced[-1].endswith("\n"))
        if replacement and not replacement[-1].endswith("\n") and keep_newline:
            replacement[-1] += "\n"
        if start > 0 and not lines[start - 1].endswith("\n") and replacement:
            lines[start - 1] += "\n"
        lines[start:end] = replacement
    return "".join(lines)


class Workspace:
    """Applies FileOperations relative to a root directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, path: str | Path) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._root / candidate
        candidate = candidate.resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise WorkspaceError(f"{path} is outside the workspace")
        return candidate

    def read(self, path: str | Path) -> Optional[str]:
        target = self.resolve(path)
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8")

    def touched_paths(self, operations: Iterable[FileOperation]) -> list[Path]:
        paths = []
        for op in operations:
            if op.path and self.resolve(op.path) not in paths:
                paths.append(self.resolve(op.path))
        return paths

    def apply(self, op: FileOperation) -> Path:
        if not op.path:
            raise WorkspaceError(f"{op.type.value} operation has no target path")
        target = self.resolve(op.path)

        if op.type is OperationType.CREATE_DIRECTORY:
            target.mkdir(parents=True, exist_ok=True)
        elif op.type is OperationType.CREATE:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(op.content or "", encoding="utf-8")
        elif op.type is OperationType.EDIT:
            if not target.is_file():
                raise WorkspaceError(f"cannot edit missing file {op.path}")
            if op.edits:
                updated = _apply_edits(target.read_text(encoding="utf-8"), op.edits)
            else:
                updated = op.content or ""
            target.write_text(updated, encoding="utf-8")
        elif op.type is OperationType.DELETE:
            if target.is_dir():
                shutil.rmtree(target)
            elif target.exists():
                target.unlink()
        _log.debug("Applied %s to %s", op.type.value, target)
        return target

    def apply_all(self, operations: Iterable[FileOperation]) -> list[Path]:
        return [self.apply(op) for op in operations]

    def snapshot(self, paths: Iterable[str | Path]) -> Snapshot:
        snap = Snapshot()
        for path in paths:
            target = self.resolve(path)
            if target.is_dir():
                snap.directories.add(target)
                for child in target.rglob("*"):
                    if child.is_file():
                        snap.files[child] = child.read_bytes()
                continue
            snap.files[target] = target.read_bytes() if target.is_file() else None
            parent = target.parent
            while parent != self._root and not parent.exists():
                parent = parent.parent
            snap.directories.add(parent)
        return snap

    def restore(self, snap: Snapshot) -> None:
        """Put every captured path back exactly as it was.

        Raises OSError when a file cannot be written back.
        """
        for directory in snap.directories:
            directory.mkdir(parents=True, exist_ok=True)
        for target, content in snap.files.items():
            if content is None:
                if target.is_dir():
                    shutil.rmtree(target)
                elif target.exists():
                    target.unlink()
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        for target in list(snap.files):
            parent = target.parent
            while parent != self._root and parent not in snap.directories and parent.is_dir():
                if any(parent.iterdir()):
                    break
                parent.rmdir()
                parent = parent.parent
