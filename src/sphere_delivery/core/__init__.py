"""Core configuration for the delivery service."""
