#!/usr/bin/env python3
"""Launcher for the media cloner.

Convenience wrapper so you can just:
    ./scripts/run_cloner.py
without installing the package. Adds project root to sys.path; the service
loads .env itself before reading the config.
"""

import sys
from pathlib import Path

# Ensure project root is on sys.path so standard package imports work
script_dir = Path(__file__).resolve().parent
project_root = script_dir.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from cloner.service import main  # scheduler + pipeline wiring


if __name__ == "__main__":
    sys.exit(main())
