"""Kubernetes operator and gateway for per-player challenge instances."""

from .app import create_app, load
from .config import Settings
from .reconciler import InstanceReconciler

__version__ = "0.1.0"

__all__ = ["InstanceReconciler", "Settings", "create_app", "load"]
