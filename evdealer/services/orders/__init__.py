"""Orders service package."""
