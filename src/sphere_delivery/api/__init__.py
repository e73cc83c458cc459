"""HTTP API for the delivery engine."""
