"""
Piezomon - real-time telemetry relay for a piezoelectric energy harvester.

A single server accepts one sensor device and many browser dashboards,
keeps the latest reading plus derived statistics, and fans updates out
to every dashboard. Without a device it synthesizes demo readings.
"""

__version__ = "0.1.0"
__author__ = "Piezomon Contributors"
