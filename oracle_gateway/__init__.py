"""Paywalled DeFi security-intelligence gateway."""

__version__ = "3.0.0"
