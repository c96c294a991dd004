"""Calculation services and store adapters."""
