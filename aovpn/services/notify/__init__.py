"""
Notify Service

Escalation alerts over an HTTP webhook.
"""

from .alert_notifier import AlertNotifier

__all__ = ["AlertNotifier"]
