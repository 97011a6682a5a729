"""
Core package for shared utilities.

Configuration, structured logging, the clock and identity abstractions,
and the error taxonomy shared by every service.
"""
