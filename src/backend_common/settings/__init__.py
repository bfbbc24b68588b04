"""Service settings base classes."""
