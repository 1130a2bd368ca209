"""Tests for Workspace file operations and snapshot/restore."""

import pytest

from coordinator.models import FileEdit, FileOperation, OperationType
from coordinator.workspace import Workspace, WorkspaceError


@pytest.fixture
def workspace(tmp_path):
    return Workspace(tmp_path)


def _edit(path, *edits):
    return FileOperation(OperationType.EDIT, file_path=path, edits=list(edits))


class TestApply:
    def test_create_makes_parent_directories(self, workspace):
        workspace.apply(FileOperation(OperationType.CREATE, file_path="src/app.py", content="x = 1\n"))
        assert workspace.read("src/app.py") == "x = 1\n"

    def test_replace_line(self, workspace):
        (workspace.root / "f.txt").write_text("a\nb\nc\n")
        workspace.apply(_edit("f.txt", FileEdit(2, 2, "B")))
        assert workspace.read("f.txt") == "a\nB\nc\n"

    def test_insert_before_line(self, workspace):
        (workspace.root / "f.txt").write_text("a\nb\nc\n")
        workspace.apply(_edit("f.txt", FileEdit(2, 1, "x")))
        assert workspace.read("f.txt") == "a\nx\nb\nc\n"

    def test_multiple_edits_use_original_line_numbers(self, workspace):
        (workspace.root / "f.txt").write_text("a\nb\nc\n")
        workspace.apply(_edit("f.txt", FileEdit(1, 1, "A\nA2"), FileEdit(3, 3, "C")))
        assert workspace.read("f.txt") == "A\nA2\nb\nC\n"

    def test_edit_checks_old_content(self, workspace):
        (workspace.root / "f.txt").write_text("a\nb\n")
        with pytest.raises(WorkspaceError):
            workspace.apply(_edit("f.txt", FileEdit(1, 1, "z", old_content="not a")))
        assert workspace.read("f.txt") == "a\nb\n"

    def test_edit_without_ranges_replaces_content(self, workspace):
        (workspace.root / "f.txt").write_text("old\n")
        workspace.apply(FileOperation(OperationType.EDIT, file_path="f.txt", content="new\n"))
        assert workspace.read("f.txt") == "new\n"

    def test_edit_missing_file(self, workspace):
        with pytest.raises(WorkspaceError):
            workspace.apply(_edit("missing.txt", FileEdit(1, 1, "x")))

    def test_delete_and_create_directory(self, workspace):
        workspace.apply(FileOperation(OperationType.CREATE_DIRECTORY, target_directory="out/logs"))
        assert (workspace.root / "out" / "logs").is_dir()
        workspace.apply(FileOperation(OperationType.DELETE, file_path="out"))
        assert not (workspace.root / "out").exists()

    def test_paths_outside_root_rejected(self, workspace):
        with pytest.raises(WorkspaceError):
            workspace.apply(FileOperation(OperationType.CREATE, file_path="../escape.txt", content=""))

    def test_operation_without_path(self, workspace):
        with pytest.raises(WorkspaceError):
            workspace.apply(FileOperation(OperationType.CREATE))


class TestSnapshot:
    def test_restore_is_byte_exact(self, workspace):
        original = b"line one\r\nline two\n\xe2\x9c\x93 no trailing newline"
        (workspace.root / "data.txt").write_bytes(original)
        snap = workspace.snapshot(["data.txt"])
        workspace.apply(FileOperation(OperationType.EDIT, file_path="data.txt", content="changed"))
        workspace.restore(snap)
        assert (workspace.root / "data.txt").read_bytes() == original

    def test_restore_removes_created_files_and_directories(self, workspace):
        snap = workspace.snapshot(["pkg/new/mod.py"])
        workspace.apply(FileOperation(OperationType.CREATE, file_path="pkg/new/mod.py", content="x = 1\n"))
        workspace.restore(snap)
        assert not (workspace.root / "pkg").exists()

    def test_restore_recreates_deleted_directory(self, workspace):
        (workspace.root / "docs").mkdir()
        (workspace.root / "docs" / "a.md").write_text("# A\n")
        snap = workspace.snapshot(["docs"])
        workspace.apply(FileOperation(OperationType.DELETE, file_path="docs"))
        workspace.restore(snap)
        assert (workspace.root / "docs" / "a.md").read_text() == "# A\n"

    def test_touched_paths_deduplicated(self, workspace):
        ops = [
            FileOperation(OperationType.CREATE, file_path="a.py"),
            FileOperation(OperationType.EDIT, file_path="a.py"),
            FileOperation(OperationType.CREATE_DIRECTORY, target_directory="d"),
        ]
        assert workspace.touched_paths(ops) == [workspace.root / "a.py", workspace.root / "d"]
