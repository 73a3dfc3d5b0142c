"""
Climo Deciles Service

Builds hourly climatological decile distributions of fire-weather
indices from the per-station climate record archive.
"""

__version__ = "1.0.0"
