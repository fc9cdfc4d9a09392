"""Game session domain services: lifecycle, reconciliation, leaderboard.

This package holds the authoritative session logic imported by HTTP routes
and socket handlers, keeping transport concerns separated from the
anti-cheat rules.
"""
