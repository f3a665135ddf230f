"""Accelerator Workflow Engine: stepped sessions, safe autosave and confirmed AI generation."""

__version__ = "0.1.0"
