"""
Item service with interchangeable storage backends.

This package provides a FastAPI application over a data service that stores
users and data items in a relational database, a Redis key-value store, or a
process-local snapshot store, falling back automatically along that chain.
"""
