"""Configuration, database and exception primitives."""
