"""Configuration layer — effective config models, resolvers, and diagnostics.

This layer depends on pydantic, pydantic-settings, and structlog.
It must never import from bootstrap, daemon, or cli.
"""
