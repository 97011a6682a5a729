"""Business services for the dealership order workflow."""
