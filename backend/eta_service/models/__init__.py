"""Aggregate model imports for Alembic auto-detection."""

from eta_service.models.application import SubmittedApplication  # noqa: F401
