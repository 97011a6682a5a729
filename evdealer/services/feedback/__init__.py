"""Feedback service package."""
