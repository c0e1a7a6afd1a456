"""Core configuration, errors and resilience utilities."""
