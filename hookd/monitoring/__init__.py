"""
Monitoring module for hookd.

This module provides metrics and notifications for the retention job:
- Prometheus metrics for retention runs
- Email delivery of the daily stats report
"""

from .retention_metrics import RetentionMetrics
from .notifications import EmailNotificationChannel

__all__ = [
    'RetentionMetrics',
    'EmailNotificationChannel'
]
