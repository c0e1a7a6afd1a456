"""Skill runner: prompt-to-agent execution service with workflow matching."""

__version__ = "1.0.0"
