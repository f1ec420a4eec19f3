"""DinD backend service: dependency lifecycle and health aggregation."""

__version__ = "1.0.0"
