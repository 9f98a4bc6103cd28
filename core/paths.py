"""
Path resolution utilities.

Provides base and data directories for the project.
"""
from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("WARDEN_DATA_DIR") or (BASE_DIR / "data"))
