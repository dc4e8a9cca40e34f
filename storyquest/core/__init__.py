"""Core session primitives (context stacking and turn events).

Kept free of FastAPI concerns so it can be reused by API routes, the engine, and tests.
"""
