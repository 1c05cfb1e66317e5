#!/usr/bin/env python3
"""
TaskSync

One-way-with-writeback sync between an Obsidian vault and Todoist:
1. Scans the vault for Obsidian Tasks lines (the source of truth)
2. Mirrors them into the Todoist cache (create / update / move / delete)
3. Writes completion, and optionally due date, start date, priority and
   brand-new tasks, back into the vault with surgical line edits
4. Keeps a mapping store, an audit log, file backups and a sync history
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from history import SyncHistory
from integrations import AuditLog, FileBackup, ObsidianIntegration, SelfModificationRegistry, TodoistIntegration
from reconciliation import MappingStore, SyncAction, SyncConfig, SyncEngine, SyncResult
from reconciliation.errors import ConfigurationError, SyncError


class TaskSync:
    """
    Application object wiring config, integrations and the sync engine

    Every path in the config may be absolute, `~`-relative, or relative to
    the project root.
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize TaskSync with configuration"""
        self.logger = self._setup_logging()
        self.project_root = self._detect_project_root()
        self.config = self._load_config(config_path)

        if not (self.config.get('obsidian') or {}).get('vault_path'):
            raise ConfigurationError("Missing 'obsidian.vault_path' in config")

        self.sync_config = SyncConfig.from_dict(self.config.get('sync'), self.config['obsidian'])

        state_config = self.config.get('state') or {}
        backup_config = self.config.get('backups') or {}
        audit_config = self.config.get('audit') or {}
        history_config = self.config.get('history') or {}

        self.store = MappingStore.load(self._resolve(state_config.get('path', 'cache/sync_state.json')))
        self.registry = SelfModificationRegistry()
        self.audit = AuditLog(self._resolve(audit_config.get('path', 'logs/audit.log')))
        self.backup = FileBackup(
            self._resolve(backup_config.get('path', 'backups')),
            max_per_file=backup_config.get('max_per_file', 50),
            max_age_days=backup_config.get('max_age_days', 7),
        )
        self.history = SyncHistory(
            self._resolve(history_config.get('path', 'cache/sync_history.json')),
            max_entries=history_config.get('max_entries', 200),
        )

        self._obsidian = ObsidianIntegration(
            self.config['obsidian'], backup=self.backup, audit=self.audit, registry=self.registry
        )
        self._todoist = TodoistIntegration(self.config.get('todoist') or {}, project_root=self.project_root)
        self.engine = SyncEngine(self._obsidian, self._todoist, self.store, self.sync_config)

        self.logger.info("✅ TaskSync initialized successfully")

    def _setup_logging(self) -> logging.Logger:
        """Setup logging for the app"""
        logger = logging.getLogger("TaskSync")

        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - TaskSync - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(logging.INFO)

        return logger

    def _detect_project_root(self) -> Path:
        """Detect project root directory"""
        current_path = Path(__file__).resolve()

        # Look for project markers
        for parent in current_path.parents:
            if (parent / 'pyproject.toml').exists() or (parent / 'config').is_dir():
                return parent

        # Fallback
        return Path.cwd()

    def _load_config(self, config_path: Optional[str] = None) -> Dict[str, Any]:
        """Load configuration from YAML file"""
        if config_path is None:
            config_path = self.project_root / 'config' / 'config.yaml'
        else:
            config_path = Path(config_path).expanduser()

        if not config_path.exists():
            example_config = self.project_root / 'config' / 'config.example.yaml'
            if example_config.exists():
                self.logger.warning(
                    f"Config not found at {config_path}. "
                    f"Please copy {example_config} to {config_path} and customize."
                )
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}

        if not isinstance(config, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {config_path}")
        return config

    def _resolve(self, path: str) -> Path:
        resolved = Path(path).expanduser()
        return resolved if resolved.is_absolute() else self.project_root / resolved

    # ==================== Commands ====================

    def run_sync(self, dry_run: Optional[bool] = None) -> SyncResult:
        """
        Run one sync and record it in the history

        Raises:
            ConfigurationError, SafetyAbortError, SyncAlreadyRunningError
        """
        result = self.engine.run(dry_run=dry_run)
        self.history.record(result)
        return result

    def status(self) -> Dict[str, Any]:
        config = self.sync_config
        return {
            'vault_path': str(self._obsidian.vault_path),
            'cache_file': str(self._todoist.cache_file),
            'state_file': str(self.store.path),
            'mappings': len(self.store),
            'last_sync': self.store.last_sync,
            'dry_run': config.dry_run,
            'writeback': {
                'completion': config.completion_writeback,
                'due_date': config.due_date_writeback,
                'start_date': config.start_date_writeback,
                'priority': config.priority_writeback,
                'new_tasks': config.new_task_writeback,
            },
        }

    def reset(self) -> int:
        """
        Forget every mapping

        Returns:
            Number of mappings dropped
        """
        count = len(self.store)
        self.store.reset()
        self.store.save()
        self.logger.warning(f"Sync state reset ({count} mappings dropped)")
        return count

    def recent_history(self, limit: int = 10) -> List[Dict[str, Any]]:
        return self.history.entries(limit=limit)


def _print_result(result: SyncResult) -> None:
    print(f"\n🔄 SYNC RESULT{' (dry run)' if result.dry_run else ''}:")
    print("=" * 60)
    print(f"{result.summary} ({result.duration:.2f}s)")

    changes = [o for o in result.outcomes if o.action not in (SyncAction.ERROR, SyncAction.SKIPPED)]
    if changes:
        print()
        for outcome in changes:
            location = f" ({outcome.file_path})" if outcome.file_path else ""
            print(f"  [{outcome.action.value}] {outcome.title}{location}")

    if result.conflicts:
        print(f"\n⚠️  CONFLICTS ({len(result.conflicts)}) - vault version kept:")
        for conflict in result.conflicts:
            print(f"  - {conflict.source_task.title}")

    if result.errors:
        print(f"\n❌ ERRORS ({len(result.errors)}):")
        for outcome in result.errors:
            print(f"  - {outcome.title}: {outcome.error}")


def main():
    """CLI entry point"""
    import argparse

    parser = argparse.ArgumentParser(
        description="TaskSync: Obsidian vault ⇄ Todoist task sync"
    )
    parser.add_argument(
        'command',
        choices=['sync', 'status', 'reset', 'history'],
        help='Command to execute'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Report what would change without writing anything (for sync command)'
    )
    parser.add_argument(
        '--limit',
        type=int,
        default=10,
        help='Number of runs to show (for history command, default: 10)'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--config',
        help='Path to config file'
    )

    args = parser.parse_args()

    try:
        app = TaskSync(config_path=args.config)
    except (SyncError, OSError, yaml.YAMLError) as e:
        print(f"❌ Failed to initialize TaskSync: {e}")
        return 1

    if args.verbose:
        logging.getLogger("TaskSync").setLevel(logging.DEBUG)

    if args.command == 'sync':
        try:
            result = app.run_sync(dry_run=True if args.dry_run else None)
        except SyncError as e:
            print(f"❌ Sync aborted: {e}")
            return 1

        _print_result(result)
        return 1 if result.errors else 0

    elif args.command == 'status':
        status = app.status()
        print("\n📊 SYNC STATUS:")
        print("=" * 60)
        print(f"Vault:      {status['vault_path']}")
        print(f"Todoist:    {status['cache_file']}")
        print(f"State:      {status['state_file']}")
        print(f"Mappings:   {status['mappings']}")
        last_sync = status['last_sync']
        print(f"Last sync:  {last_sync.strftime('%Y-%m-%d %H:%M:%S') if last_sync else 'never'}")
        print(f"Dry run:    {'on' if status['dry_run'] else 'off'}")
        enabled = [name for name, on in status['writeback'].items() if on]
        print(f"Writeback:  {', '.join(enabled) if enabled else 'none'}")

    elif args.command == 'reset':
        count = app.reset()
        print(f"✅ Sync state reset ({count} mappings dropped). Next sync will relink by title.")

    elif args.command == 'history':
        entries = app.recent_history(limit=args.limit)
        if not entries:
            print("\n📜 No sync history yet")
            return 0

        print(f"\n📜 SYNC HISTORY (last {len(entries)}):")
        print("=" * 60)
        for entry in entries:
            marker = "❌" if entry.get('errors') else "✅"
            print(f"{marker} {(entry.get('timestamp') or '?')[:19]}  {entry.get('summary', '')}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
