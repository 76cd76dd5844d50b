"""Outpost deployment engine."""
