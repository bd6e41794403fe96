"""Persistence layer: engine factories, ORM tables and repositories."""
