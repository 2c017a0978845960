#!/usr/bin/env python3
"""Backup/restore runner"""
import sys

from volume_backup.main import main

if __name__ == '__main__':
    sys.exit(main())
