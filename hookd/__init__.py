"""
hookd - Batch daemon for the webhook admin panel.

This package contains the retention and storage-quota enforcement engine that
keeps captured webhook requests within their age window and per-account budget.
"""

__version__ = "0.1.0"
