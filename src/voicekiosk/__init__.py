"""Voice kiosk client — realtime synchronization core."""

__version__ = "0.1.0"
