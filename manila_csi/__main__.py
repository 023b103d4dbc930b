#!/usr/bin/env python3
"""
Entry point for the manila-csi-plugin command.
"""

import sys

from manila_csi.cli import main

if __name__ == "__main__":
    sys.exit(main())
