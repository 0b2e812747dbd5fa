"""
Pytest configuration for test discovery and imports.

Ensures src/ (handler modules) and the repository root (the Cloud Function
main.py) are on sys.path so tests can import modules directly.
"""

import os
import sys

ROOT_DIR = os.path.dirname(os.path.abspath(__file__))
SRC_DIR = os.path.join(ROOT_DIR, "src")

for path in (ROOT_DIR, SRC_DIR):
    if path not in sys.path:
        sys.path.insert(0, path)
