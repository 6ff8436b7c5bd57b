#!/usr/bin/env python3
"""Run backupx from a source checkout"""
import sys
from backupx.cli import main

if __name__ == '__main__':
    sys.exit(main())
