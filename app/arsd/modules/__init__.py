"""
Feature modules live under this package.

Each module owns its models/service/views; platform primitives (auth, RBAC,
audit, storage, DB session) are shared from app.arsd.
"""
