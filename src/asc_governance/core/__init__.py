"""Core domain: models, schemas, pure algorithms and services."""
