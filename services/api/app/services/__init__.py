"""Business logic services.

Services contain all business logic and are called by routes.
Services accept their dependencies (session, clients) explicitly and raise
typed errors from app.errors.
"""
