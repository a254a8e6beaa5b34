"""Background job helpers."""
