"""
Core building blocks shared by every app: base model, exceptions,
structured logging, request tracing and capability-gated DRF permissions.
"""
