"""Utility helpers for Celery tasks."""
from .dispatcher import CeleryConversionNotifier, TaskDispatcher
from .base_task import BaseTask

__all__ = ["TaskDispatcher", "CeleryConversionNotifier", "BaseTask"]
