"""Domain services for chama contributions."""
