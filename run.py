#!/usr/bin/env python3
"""Convenience runner for the Strava duplicate-ride bot.

Usage:
    python run.py            # scheduled, every 15 minutes
    python run.py --once     # single cycle
"""
import sys

from strava_bot.main import main

if __name__ == "__main__":
    sys.exit(main())
