"""
Notification channels for hookd.
"""

from .email_notification import EmailNotificationChannel

__all__ = ['EmailNotificationChannel']
