"""Service layer for Matchday."""
