"""Data models for polystrat."""
