"""Pipeline services for the skill runner."""
