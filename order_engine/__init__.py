"""
Order execution engine.

Accepts swap orders, routes them to the better of two simulated venues,
simulates settlement and streams every status transition to subscribers.
"""

__version__ = "1.0.0"
