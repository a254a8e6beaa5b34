"""Database session helpers."""
