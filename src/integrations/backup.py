"""
File Backup

Timestamped copies of vault files, taken before any modification.
"""

import logging
import re
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional


class FileBackup:
    """Keeps recent copies of every file the sync writes to"""

    def __init__(self, backup_dir: Path, max_per_file: int = 50, max_age_days: int = 7):
        """
        Args:
            backup_dir: Directory holding the copies
            max_per_file: Copies kept per file regardless of age
            max_age_days: Copies beyond max_per_file are pruned once older than this
        """
        self.backup_dir = Path(backup_dir).expanduser()
        self.max_per_file = max_per_file
        self.max_age_days = max_age_days
        self.logger = logging.getLogger("TaskSync.Backup")

    def backup_file(self, file_path: Path, now: Optional[datetime] = None, root: Optional[Path] = None) -> Path:
        """
        Copy a file into the backup directory

        Args:
            file_path: File to copy
            now: Timestamp for the backup name
            root: When given, the path relative to it names the backup, so
                same-named files in different folders stay apart

        Returns:
            Path of the new backup
        """
        file_path = Path(file_path)
        now = now or datetime.now()
        self.backup_dir.mkdir(parents=True, exist_ok=True)

        stem = self.backup_stem(file_path, root)
        backup_path = self.backup_dir / f"{stem}_{now.strftime('%Y%m%d_%H%M%S_%f')}{file_path.suffix}"
        shutil.copyfile(file_path, backup_path)
        self.logger.debug(f"Backed up {file_path.name} → {backup_path.name}")

        self.prune(stem, file_path.suffix, now)
        return backup_path

    def backup_stem(self, file_path: Path, root: Optional[Path] = None) -> str:
        """Name prefix for a file's backups: 'Projects/Home.md' -> 'Projects__Home'"""
        file_path = Path(file_path)
        relative = file_path.with_suffix('')
        if root is not None:
            relative = relative.relative_to(Path(root))
        else:
            relative = Path(relative.name)
        return '__'.join(relative.parts).replace(' ', '_')

    def backups_for(self, stem: str, suffix: str = ".md") -> List[Path]:
        """Backups of one file, newest first"""
        if not self.backup_dir.exists():
            return []
        pattern = re.compile(re.escape(stem) + r'_\d{8}_\d{6}_\d{6}' + re.escape(suffix) + '$')
        matching = [p for p in self.backup_dir.iterdir() if pattern.match(p.name)]
        return sorted(matching, key=lambda p: p.name, reverse=True)

    def prune(self, stem: str, suffix: str = ".md", now: Optional[datetime] = None) -> int:
        """
        Remove backups that are both beyond the per-file count and too old

        Returns:
            Number of backups removed
        """
        cutoff = (now or datetime.now()) - timedelta(days=self.max_age_days)
        removed = 0

        for index, path in enumerate(self.backups_for(stem, suffix)):
            if index < self.max_per_file:
                continue
            if datetime.fromtimestamp(path.stat().st_mtime) < cutoff:
                path.unlink()
                removed += 1

        if removed:
            self.logger.info(f"Pruned {removed} old backups of {stem}{suffix}")
        return removed
