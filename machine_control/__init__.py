"""
Machine control service.

Reserves self-service machines for jobs and drives them through their
status lifecycle while keeping a read-through cache coherent with the
record store.
"""

__version__ = "2.0.0"
