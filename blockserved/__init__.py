"""Reconciled legal-notice delivery tracking."""

__version__ = "0.1.0"
