"""
Feature modules live under this package.

Each module owns its models, service functions and routes, and reuses the
platform pieces (auth guards, audit trail, DB session).
"""
