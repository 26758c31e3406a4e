"""
FleetTrack live location tracking
"""

__version__ = "1.0.0"
