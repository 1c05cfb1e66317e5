"""
Surgical Edits

Every write into the vault goes through SurgicalEditor:

1. Re-read the file and check the target line still matches what was scanned
   (whitespace-trimmed). On mismatch nothing is written.
2. Apply a line transform that changes only the minimum needed.
3. Back up the file, tell the watcher registry we are about to write it, then
   replace it atomically. Line endings and all other lines are kept exactly.
4. Write one audit entry per changed or inserted line.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, List, Optional

from reconciliation.errors import ContentMismatchError, LineOutOfRangeError, SourceFileNotFoundError
from reconciliation.models import EditOutcome, SourceInfo

from .audit import AuditLog
from .backup import FileBackup
from .tasks_format import LineEdit
from .watcher import SelfModificationRegistry


class SurgicalEditor:
    """In-place line edits on vault files"""

    def __init__(
        self,
        vault_path: Path,
        backup: Optional[FileBackup] = None,
        audit: Optional[AuditLog] = None,
        registry: Optional[SelfModificationRegistry] = None
    ):
        self.vault_path = Path(vault_path).expanduser()
        self.backup = backup
        self.audit = audit
        self.registry = registry
        self.logger = logging.getLogger("TaskSync.Surgical")

    def resolve(self, file_path: str) -> Path:
        """Absolute path for a vault-relative path ('/Projects/Home.md')"""
        return self.vault_path / file_path.lstrip('/')

    def edit_line(
        self,
        file_path: str,
        line_number: int,
        original_line: str,
        action: str,
        transform: Callable[[str], LineEdit]
    ) -> EditOutcome:
        """
        Apply `transform` to one line of a vault file

        Args:
            file_path: Vault-relative path
            line_number: 1-based line number captured at scan time
            original_line: Line text captured at scan time
            action: Audit action name, e.g. "markTaskComplete"
            transform: Receives the current line (without line ending) and
                returns the replacement and any lines to insert above it

        Returns:
            EditOutcome with the edited record's new position

        Raises:
            SourceFileNotFoundError: file is gone
            LineOutOfRangeError: file no longer has that many lines
            ContentMismatchError: line changed since the scan; file untouched
        """
        path = self.resolve(file_path)
        if not path.is_file():
            raise SourceFileNotFoundError(str(path))

        lines = self._read_lines(path)
        if not 1 <= line_number <= len(lines):
            raise LineOutOfRangeError(line_number, len(lines))

        current = lines[line_number - 1]
        if current.strip() != original_line.strip():
            raise ContentMismatchError(original_line.strip(), current.strip())

        # Keep CRLF files CRLF
        eol = '\r' if current.endswith('\r') else ''
        body = current[:-1] if eol else current

        edit = transform(body)
        if edit.line == body and not edit.insert_above:
            self.logger.debug(f"No change needed at {file_path}:{line_number}")
            return EditOutcome(SourceInfo(file_path, line_number, current))

        inserted = [line + eol for line in edit.insert_above]
        lines[line_number - 1:line_number] = inserted + [edit.line + eol]
        self._write(path, lines)

        if self.audit:
            for line in edit.insert_above:
                self.audit.log_modification(edit.insert_action, file_path, line_number, "", line)
            self.audit.log_modification(action, file_path, line_number, body, edit.line)

        new_line_number = line_number + len(inserted)
        self.logger.debug(f"{action} at {file_path}:{line_number} (+{len(inserted)} lines)")
        return EditOutcome(SourceInfo(file_path, new_line_number, edit.line + eol), inserted=len(inserted))

    def append_line(self, file_path: str, line: str, action: str) -> SourceInfo:
        """
        Append a line at the end of a vault file, creating the file if needed

        Returns:
            SourceInfo of the appended line
        """
        path = self.resolve(file_path)
        lines = self._read_lines(path) if path.is_file() else ['']

        # Keep CRLF files CRLF
        eol = '\r' if lines[0].endswith('\r') else ''

        # A file ending in a newline splits into a trailing empty element
        if lines[-1] == '':
            lines[-1] = line + eol
        else:
            lines[-1] += eol
            lines.append(line + eol)
        line_number = len(lines)
        lines.append('')

        self._write(path, lines)
        if self.audit:
            self.audit.log_modification(action, file_path, line_number, "", line)

        return SourceInfo(file_path, line_number, line + eol)

    def _read_lines(self, path: Path) -> List[str]:
        # Bytes in, so '\r' survives the split
        return path.read_bytes().decode('utf-8').split('\n')

    def _write(self, path: Path, lines: List[str]) -> None:
        if self.backup and path.exists():
            self.backup.backup_file(path, root=self.vault_path)
        if self.registry:
            self.registry.register(path)

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix='.tmp', dir=str(path.parent))
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write('\n'.join(lines).encode('utf-8'))
            if path.exists():
                shutil.copymode(path, tmp_name)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
