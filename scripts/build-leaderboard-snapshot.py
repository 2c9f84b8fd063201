#!/usr/bin/env python3
"""
Holder points leaderboard snapshot
Current owners only (time since they last received each token), selling resets,
points per full window held since START_AT. Writes public/leaderboard.json.
"""

from holdpoints.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
