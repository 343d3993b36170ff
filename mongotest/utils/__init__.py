"""Utility helpers: ports, filesystem, test labels."""
