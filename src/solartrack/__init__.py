"""
SolarTrack -- confidential solar usage logging.

Log your daily kWh as an encrypted value on-chain. Nobody sees the
number but you. Reveal your own running total whenever you choose.
"""

import os

__version__ = "0.1.0"
__author__ = "SolarTrack"

SOLARTRACK_HOME = os.environ.get("SOLARTRACK_HOME", "~/.solartrack")

DAY_SECONDS = 86400
UINT32_MAX = 2**32 - 1
