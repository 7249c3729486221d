# Routes package init
"""
Library API Backend — API Routes Package
=========================================

Route Inventory:
    - users.py:   /api/v1/users[...]   user CRUD, loans, books, can-borrow
    - books.py:   /api/v1/books[...]   catalogue, ISBN lookup/creation, status
    - loans.py:   /api/v1/loans[...]   lend, return, list, cleanup
    - health.py:  GET /health          service health check (no auth)

Routes stay thin: extract input, call a service, return its result.
Domain rules live in the services.
"""
