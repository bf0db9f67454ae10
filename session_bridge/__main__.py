"""
Session Bridge - Entry point

Run with: python -m session_bridge start
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
