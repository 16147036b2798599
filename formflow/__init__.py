# formflow/__init__.py

"""
FormFlow Submission Lifecycle Engine

Ingests form submissions, caches hot reads across three tiers, queues
downstream work and drives documents through Autentique signing.
"""

__version__ = "2.0.0"
