"""pxtools - operator utilities for Portworx storage nodes."""

__version__ = "1.0.0"
