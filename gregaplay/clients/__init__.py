"""HTTP clients for external platforms."""
