"""Celery beat schedule configuration.

Stale PENDING payments are swept periodically; each order found is
reconciled against the gateway in its own task.
"""
from __future__ import annotations

CELERY_BEAT_SCHEDULE = {
    "payments-reconcile-stale": {
        "task": "payments.reconcile_stale",
        "schedule": 300,  # every 5 minutes
    },
}
