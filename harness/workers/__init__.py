"""Celery workers and tasks.

Tasks are registered by ``harness.core.celery``, which imports each worker
module explicitly.
"""
