"""EV dealership sales backend: orders, payments and deliveries."""

__version__ = "1.0.0"
