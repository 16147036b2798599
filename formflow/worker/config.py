### formflow/worker/config.py

"""
Celery configuration settings

- Broker and result backend settings
- Task serialization settings
- Timezone configuration
- Beat schedule for periodic tasks
"""

# Third party imports
from celery.schedules import crontab

# Local imports
from formflow.core.config import settings

# Broker and result backend configurations
broker_url = settings.celery_broker
result_backend = settings.celery_backend

# Task serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"
timezone = "UTC"
enable_utc = True

# Task settings
task_track_started = True
task_time_limit = 10 * 60  # 10 minutes
task_soft_time_limit = 8 * 60  # 8 minutes
worker_prefetch_multiplier = 1
task_acks_late = True
worker_disable_rate_limits = False


# Beat schedule configuration
beat_schedule = {
    # Drain due signature jobs
    "process-signature-jobs": {
        "task": "formflow.queue.tasks.process_signature_jobs",
        "schedule": crontab(minute="*"),
    },

    # Remove expired rows from the database cache tier
    "cleanup-expired-cache": {
        "task": "formflow.cache.tasks.cleanup_expired_cache",
        "schedule": crontab(minute=0),  # Hourly
    },

    # Enforce webhook log retention
    "prune-webhook-logs": {
        "task": "formflow.esign.tasks.prune_webhook_logs",
        "schedule": crontab(hour=3, minute=30),  # Daily at 3:30 AM UTC
    },
}

# Worker configuration
worker_hijack_root_logger = False
worker_log_color = False
