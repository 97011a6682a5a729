"""Payments service package."""
