"""
HTTP and WebSocket boundary for the order execution engine.
"""
