#!/usr/bin/env python3
"""
FirstFrame API Server Launcher
"""

import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))

from server import run_server  # noqa: E402

if __name__ == "__main__":
    run_server()
