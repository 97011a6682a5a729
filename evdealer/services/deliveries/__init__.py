"""Deliveries service package."""
