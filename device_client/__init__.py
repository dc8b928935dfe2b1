"""
Device Client - Constrained endpoint for the relay hub.

This module runs on the display (or producer) device, keeps the network
link and the hub session alive with two cooperative state machines, and
hands received RGB565 frames to the display driver.

NO HUB DEPENDENCIES.
"""

__version__ = "1.0.0"
