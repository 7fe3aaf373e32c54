"""
Shared infrastructure: configuration, logging, exceptions, store connections and metrics.
"""
