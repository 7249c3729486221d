"""
Library API Backend — Application Package Initializer
======================================================

What: Marks the `library_api` directory as a Python package.
Who:  Used by uvicorn (`library_api.main:app`), Alembic, pytest and the seed script.

Architecture Note:
    The backend follows a layered architecture:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │  Services (Loan / Book / User /     │  ← Lending rules, eligibility,
    │  Eligibility / Metadata resolver)   │    lifecycle guards
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │   Entity Store (Persistence)        │  ← Scoped async transactions
    └─────────────────────────────────────┘

    Services never open sessions on their own; each one receives an
    EntityStore at construction and runs every multi-step operation
    inside a single store transaction.
"""

__version__ = "1.0.0"
