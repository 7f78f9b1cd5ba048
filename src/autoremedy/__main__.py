"""Main entry point for autoremedy.

Usage:
    python -m autoremedy deploy PROJECT_ROOT
    python -m autoremedy surgeon PROJECT_ROOT [BUILD_OUTPUT]
    python -m autoremedy memory PROJECT_ROOT
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main() or 0)
