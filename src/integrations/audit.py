"""
Audit Log

Append-only record of every change written to the vault. Rotates at 5 MB,
keeping a single previous generation as audit.old.log.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path


MAX_LOG_BYTES = 5 * 1024 * 1024


def _old_generation_name(default_name: str) -> str:
    # audit.log.1 -> audit.old.log
    base = Path(default_name[:-len(".1")]) if default_name.endswith(".1") else Path(default_name)
    return str(base.with_suffix(".old" + base.suffix))


class AuditLog:
    """Mutation log kept beside the sync state"""

    def __init__(self, path: Path, max_bytes: int = MAX_LOG_BYTES):
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)

        self.handler = RotatingFileHandler(
            self.path, maxBytes=max_bytes, backupCount=1, encoding='utf-8', delay=True
        )
        self.handler.namer = _old_generation_name
        self.handler.setFormatter(logging.Formatter('[%(asctime)s] %(message)s', datefmt='%Y-%m-%dT%H:%M:%S%z'))

        # Standalone logger so audit lines never reach the console handlers
        self._logger = logging.Logger("TaskSync.Audit")
        self._logger.addHandler(self.handler)

    def log(self, message: str) -> None:
        self._logger.info(message)

    def log_modification(self, action: str, file_path: str, line_number: int, before: str, after: str) -> None:
        """Record one line change with before/after text"""
        self.log(f"FILE_MODIFY action={action} file={file_path} line={line_number}")
        self.log(f"  BEFORE: {before}")
        self.log(f"  AFTER:  {after}")

    def close(self) -> None:
        self._logger.removeHandler(self.handler)
        self.handler.close()
