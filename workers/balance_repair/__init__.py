"""Balance repair worker."""
