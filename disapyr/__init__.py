"""Disapyr — share a secret that can be read exactly once."""

__version__ = "0.1.0"
