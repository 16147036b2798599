## formflow/core/celery_app.py

"""
Main Celery Application Configuration

Sets up the Celery instance with Redis as broker and result backend and
registers the task modules of the submission pipeline.
"""

# Third party imports
from celery import Celery

# Create Celery Instance
app = Celery("formflow")

# Configure celery from separate config file
app.config_from_object("formflow.worker.config")

# Auto discover tasks.py modules in these packages
app.autodiscover_tasks([
    "formflow.queue",
    "formflow.cache",
    "formflow.esign",
])

if __name__ == "__main__":
    app.start()
