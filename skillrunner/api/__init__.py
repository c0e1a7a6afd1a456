"""HTTP API for the skill runner."""
