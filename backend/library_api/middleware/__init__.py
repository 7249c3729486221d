# Middleware package init
"""
Library API Backend — Middleware Package
=========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route

    - Rate Limit rejects over-quota clients before anything else runs
    - Request ID sets the correlation id the access log and error bodies use
    - Logging records method, path, status and duration per request

Starlette runs the last-added middleware outermost, so create_app() adds
them in reverse: CORS, GZip, Logging, Request ID, Rate Limit.
"""
