"""Marketplace Service - task, bid and contract lifecycle for local services."""

__version__ = "0.1.0"
