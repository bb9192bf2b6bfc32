"""Core console primitives (event types, log patterns, pure helpers).

Kept free of FastAPI and transport concerns so the router, pollers and tests
can share them.
"""
