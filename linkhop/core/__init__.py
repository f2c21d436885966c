"""Configuration, database and observability."""
