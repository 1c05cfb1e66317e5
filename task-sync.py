#!/usr/bin/env python3
"""
task-sync CLI

Keeps Todoist in step with the tasks in an Obsidian vault.

Usage:
    ./task-sync.py sync                 # Run one sync
    ./task-sync.py sync --dry-run       # Show what would change
    ./task-sync.py status               # Mappings, last sync, writeback toggles
    ./task-sync.py history --limit 20   # Recent sync runs
    ./task-sync.py reset                # Forget all mappings
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / 'src'))

from task_sync import main

if __name__ == '__main__':
    sys.exit(main())
