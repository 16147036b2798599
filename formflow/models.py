# formflow/models.py

"""
Imports every model so they register on the shared metadata.
"""

from formflow.audit_trail.models import ActivityLog  # noqa: F401
from formflow.cache.models import CacheEntry  # noqa: F401
from formflow.esign.models import WebhookLog  # noqa: F401
from formflow.forms.models import Form  # noqa: F401
from formflow.queue.models import QueueJob  # noqa: F401
from formflow.submissions.models import Submission, SubmissionMeta  # noqa: F401
