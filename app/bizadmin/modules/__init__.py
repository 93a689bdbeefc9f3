"""
Feature modules live under this package.

Each module owns its blueprint (admin.py), service layer and models, and reuses the platform
primitives (auth, RBAC, audit, DB session) from app.bizadmin.
"""
