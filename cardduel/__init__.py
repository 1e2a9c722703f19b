"""Matchmaking and room-session layer for two-player card duels."""

__version__ = "0.1.0"
