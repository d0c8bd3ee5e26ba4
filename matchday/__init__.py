"""Matchday: job coordination and results resolution for the daily prediction game."""

__version__ = "0.1.0"
