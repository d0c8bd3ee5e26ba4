"""HTTP API for Matchday."""
