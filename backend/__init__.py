"""HTTP API for the story engine."""
