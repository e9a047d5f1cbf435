"""Data stores for persistence and caching.

Stores handle:
- PostgreSQL: DB session, ORM operations (SQLite for local runs and tests)
- Redis: catalog title cache, merchant sync locks, TTL policies

No business/matching logic in stores - that belongs in services.
"""
