"""Workflow template and instance engine."""
