"""Backends behind the repository layer: stores and tagged caches."""
