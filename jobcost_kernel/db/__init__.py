"""Database layer: declarative base, engine and column types."""
