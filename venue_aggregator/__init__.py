"""
Venue Aggregator

Aggregates venue records from multiple third-party providers into
one canonical view per real-world venue.
"""
__version__ = "0.1.0"
