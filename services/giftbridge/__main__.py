"""
Entry point for running GiftBridge as a module.

Usage:
    python -m services.giftbridge <command> [args]
"""

import sys

from .main import main

if __name__ == "__main__":
    sys.exit(main())
