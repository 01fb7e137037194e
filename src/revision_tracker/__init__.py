"""Revision Tracker: schedule spaced reviews of practice problems."""

__version__ = "0.1.0"
