"""Outbound ActivityPub delivery engine for the Sphere federation service."""

__version__ = "0.1.0"
