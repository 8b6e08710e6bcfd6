"""Photo Fusion Service - background removal, AI backgrounds and compositing."""

__version__ = "1.0.0"
