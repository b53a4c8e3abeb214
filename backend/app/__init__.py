"""Application package for the ticket resale marketplace backend.

This package exposes the service, repository and model modules used by
the FastAPI application. Outbound messaging, payment webhook parsing and
identifier generation live under `app.utils`.
"""
