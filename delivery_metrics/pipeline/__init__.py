"""Delivery metrics pipeline: settings resolution and the per-repository runner."""

from .runner import RunSummary, main, process_repo, run

__all__ = ["RunSummary", "main", "process_repo", "run"]
