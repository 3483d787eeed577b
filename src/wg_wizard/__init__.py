# src/wg_wizard/__init__.py
"""Reproducible WireGuard network provisioning: addresses and keys from minimal state."""

__version__ = "0.3.0"
