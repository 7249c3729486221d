# Services package init
"""
Library API Backend — Services Layer
=====================================

What:  Business logic between routes (HTTP) and the EntityStore (persistence).
How:   Each service receives the store (and its collaborators) at
       construction. create_app() builds one instance of each and keeps
       them on app.state; routes reach them through dependencies.py.

Service Inventory:
    - EligibilityService:  can a user borrow right now (tier + overdue rules)
    - LoanService:         lend / return / list / remove loans
    - BookService:         catalogue, ISBN creation, deletion + status guard
    - UserService:         user CRUD, deletion guard, per-user views
    - MetadataResolver (abstract): ISBN → BookMetadata contract
    - GoogleBooksService:  MetadataResolver over the Google Books API
"""
