"""Taskpilot: drive coding agents through plan, execute, verify and review."""

__version__ = "0.1.0"
