"""Utility helpers shared across Scholar modules."""
