#!/usr/bin/env python3
"""Local runner"""
import os
import sys

from backup_runner.__main__ import main

if __name__ == '__main__':
    # Use a config file next to this script for local testing
    os.environ.setdefault('CONFIG_FILE', os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config.yaml'))
    sys.exit(main())
