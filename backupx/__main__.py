#!/usr/bin/env python3
"""
Command-line interface entry point for the backupx package.

This module allows the package to be executed as a script using:
python -m backupx
"""

import sys
from .cli import main


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(130)
