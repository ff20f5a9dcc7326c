"""Taskflow: hierarchical project and task engine."""

__version__ = "0.1.0"
