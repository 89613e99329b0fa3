"""
Customer relationship management backend.

This package provides a FastAPI application on top of a storage contract
for users and their customers, with relational (SQLAlchemy), document
(MongoDB) and in-memory implementations selected by configuration.
"""
