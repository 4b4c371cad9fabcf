"""Domain models for Scholar."""
