"""Analytics service package."""
