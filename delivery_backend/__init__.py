"""
Hub Delivery Backend Package.

FastAPI service that records publication performance entries and reconciles
them against insertion order delivery goals.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, dependencies and domain exceptions
    - models: Pydantic schemas and enums
    - services: Send detection, delivery reconciliation, entry rules
    - jobs: Batch delivery summary resync
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
