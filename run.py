#!/usr/bin/env python3
"""Development runner"""
import os
import sys

from backuper.cli import main

if __name__ == '__main__':
    # Use development config for local testing
    os.environ.setdefault('BACKUPER_ENV', 'development')
    sys.exit(main())
