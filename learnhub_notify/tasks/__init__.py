"""
Background Tasks Module

Task definitions for the ARQ delivery worker.

Task functions receive a special `ctx` parameter:
- ctx['redis']: Redis connection for the worker
- ctx['job_id']: Unique ID of this job
- ctx['job_try']: Which retry attempt this is (1, 2, 3...)

Running Workers:
---------------
    arq learnhub_notify.worker.WorkerSettings
"""

from learnhub_notify.tasks.notification_tasks import (
    cleanup_expired_notifications,
    deliver_due_notifications,
    deliver_notification,
)

# These names are used when enqueueing: enqueue_job('deliver_notification', ...)
__all__ = [
    "deliver_notification",
    "deliver_due_notifications",
    "cleanup_expired_notifications",
]
