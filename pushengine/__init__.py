"""Notification job scheduling and multi-channel push delivery."""

__version__ = "0.1.0"
