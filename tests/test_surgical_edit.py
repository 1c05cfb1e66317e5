"""
Tests for surgical edits, backups, the audit log and the watcher registry
"""

import os
from datetime import datetime, timedelta

import pytest

from integrations.audit import AuditLog
from integrations.backup import FileBackup
from integrations.surgical import SurgicalEditor
from integrations.tasks_format import LineEdit
from integrations.watcher import SelfModificationRegistry
from reconciliation.errors import ContentMismatchError, LineOutOfRangeError, SourceFileNotFoundError


@pytest.fixture
def editor(vault, tmp_path):
    return SurgicalEditor(
        vault,
        backup=FileBackup(tmp_path / "backups"),
        audit=AuditLog(tmp_path / "logs" / "audit.log"),
        registry=SelfModificationRegistry(),
    )


def tick(line):
    return LineEdit(line.replace("- [ ]", "- [x]", 1))


class TestEditLine:

    def test_edits_only_target_line(self, editor, write_note):
        path = write_note("Tasks.md", "# Tasks\n- [ ] One\n- [ ] Two\n")

        outcome = editor.edit_line("/Tasks.md", 2, "- [ ] One", "markTaskComplete", tick)

        assert path.read_bytes() == "# Tasks\n- [x] One\n- [ ] Two\n".encode('utf-8')
        assert outcome.inserted == 0
        assert outcome.source.line_number == 2
        assert outcome.source.original_line == "- [x] One"

    def test_preserves_crlf(self, editor, write_note):
        path = write_note("Tasks.md", "- [ ] One\r\n- [ ] Two\r\n")
        editor.edit_line("/Tasks.md", 2, "- [ ] Two", "markTaskComplete", tick)
        assert path.read_bytes() == b"- [ ] One\r\n- [x] Two\r\n"

    def test_mismatch_leaves_file_byte_identical(self, editor, write_note, tmp_path):
        original = "- [ ] One\n- [ ] Changed by hand\n"
        path = write_note("Tasks.md", original)

        with pytest.raises(ContentMismatchError):
            editor.edit_line("/Tasks.md", 2, "- [ ] Two", "markTaskComplete", tick)

        assert path.read_bytes() == original.encode('utf-8')
        assert not (tmp_path / "backups").exists()

    def test_whitespace_trimmed_comparison(self, editor, write_note):
        path = write_note("Tasks.md", "  - [ ] Indented  \n")
        editor.edit_line("/Tasks.md", 1, "- [ ] Indented", "markTaskComplete", tick)
        assert path.read_text(encoding='utf-8') == "  - [x] Indented  \n"

    def test_line_out_of_range(self, editor, write_note):
        write_note("Tasks.md", "- [ ] One")
        with pytest.raises(LineOutOfRangeError):
            editor.edit_line("/Tasks.md", 5, "- [ ] One", "markTaskComplete", tick)

    def test_missing_file(self, editor):
        with pytest.raises(SourceFileNotFoundError):
            editor.edit_line("/Nope.md", 1, "- [ ] One", "markTaskComplete", tick)

    def test_inserted_lines_shift_record(self, editor, write_note, tmp_path):
        path = write_note("Tasks.md", "- [ ] Repeat\n")

        def rollover(line):
            return LineEdit(line.replace("[ ]", "[x]"), ["- [ ] Repeat (next)"], "insertRecurrence")

        outcome = editor.edit_line("/Tasks.md", 1, "- [ ] Repeat", "markTaskComplete", rollover)

        assert path.read_text(encoding='utf-8') == "- [ ] Repeat (next)\n- [x] Repeat\n"
        assert outcome.inserted == 1
        assert outcome.source.line_number == 2

        audit = (tmp_path / "logs" / "audit.log").read_text(encoding='utf-8')
        assert "action=insertRecurrence file=/Tasks.md line=1" in audit
        assert "action=markTaskComplete file=/Tasks.md line=1" in audit

    def test_backup_and_registry(self, editor, write_note, tmp_path):
        path = write_note("Tasks.md", "- [ ] One\n")
        editor.edit_line("/Tasks.md", 1, "- [ ] One", "markTaskComplete", tick)

        backups = list((tmp_path / "backups").iterdir())
        assert len(backups) == 1
        assert backups[0].read_text(encoding='utf-8') == "- [ ] One\n"
        assert editor.registry.is_self_modified(path)

    def test_append_line(self, editor, write_note, vault):
        write_note("Inbox.md", "# Inbox\n- [ ] Existing")

        info = editor.append_line("/Inbox.md", "- [ ] New", "appendNewTask")

        assert (vault / "Inbox.md").read_text(encoding='utf-8') == "# Inbox\n- [ ] Existing\n- [ ] New\n"
        assert info.line_number == 3

    def test_append_keeps_crlf(self, editor, write_note, vault):
        write_note("Inbox.md", "# Inbox\r\n- [ ] Existing")

        info = editor.append_line("/Inbox.md", "- [ ] New", "appendNewTask")

        assert (vault / "Inbox.md").read_bytes() == b"# Inbox\r\n- [ ] Existing\r\n- [ ] New\r\n"
        assert info.line_number == 3

    def test_same_name_in_different_folders_backed_up_apart(self, editor, write_note, tmp_path):
        write_note("Projects/Home.md", "- [ ] One\n")
        write_note("Areas/Home.md", "- [ ] One\n")

        editor.edit_line("/Projects/Home.md", 1, "- [ ] One", "markTaskComplete", tick)
        editor.edit_line("/Areas/Home.md", 1, "- [ ] One", "markTaskComplete", tick)

        assert len(editor.backup.backups_for("Projects__Home")) == 1
        assert len(editor.backup.backups_for("Areas__Home")) == 1
        assert editor.backup.backups_for("Home") == []

    def test_append_creates_file(self, editor, vault):
        info = editor.append_line("/Inbox.md", "- [ ] New", "appendNewTask")
        assert (vault / "Inbox.md").read_text(encoding='utf-8') == "- [ ] New\n"
        assert info.line_number == 1


class TestFileBackup:

    def test_prunes_only_old_and_excess(self, tmp_path):
        backup = FileBackup(tmp_path / "backups", max_per_file=2, max_age_days=7)
        source = tmp_path / "Note.md"
        source.write_text("x")

        now = datetime(2026, 3, 1, 12, 0)
        paths = [backup.backup_file(source, now=now - timedelta(minutes=i)) for i in range(4)]

        recent = now.timestamp()
        old = (now - timedelta(days=10)).timestamp()
        for path in paths[:3]:
            os.utime(path, (recent, recent))
        os.utime(paths[3], (old, old))
        backup.prune("Note", ".md", now=now)

        remaining = backup.backups_for("Note")
        assert paths[3] not in remaining
        assert paths[2] in remaining
        assert len(remaining) == 3


    def test_backup_stem(self, tmp_path):
        backup = FileBackup(tmp_path / "backups")
        vault = tmp_path / "vault"
        assert backup.backup_stem(vault / "Projects" / "Daily Log.md", root=vault) == "Projects__Daily_Log"
        assert backup.backup_stem(vault / "Projects" / "Daily Log.md") == "Daily_Log"


class TestAuditLog:

    def test_rotates_to_old_generation(self, tmp_path):
        audit = AuditLog(tmp_path / "audit.log", max_bytes=200)
        for i in range(20):
            audit.log(f"entry {i} " + "x" * 40)
        audit.close()

        assert (tmp_path / "audit.log").exists()
        assert (tmp_path / "audit.old.log").exists()
        assert not (tmp_path / "audit.log.1").exists()


class TestSelfModificationRegistry:

    def test_window_expires(self, tmp_path):
        now = [100.0]
        registry = SelfModificationRegistry(window=3.0, clock=lambda: now[0])
        registry.register(tmp_path / "a.md")

        assert registry.is_self_modified(tmp_path / "a.md")
        assert not registry.is_self_modified(tmp_path / "b.md")

        now[0] += 3.5
        assert not registry.is_self_modified(tmp_path / "a.md")
