#!/usr/bin/env python3
"""
Convenience shim to run ShadowTrace from a source checkout.
Usage: python shadowtrace.py search <anonymized report url> [--all-fights] [--debug]
"""

from shadowtrace.cli import main


if __name__ == "__main__":
    main()
