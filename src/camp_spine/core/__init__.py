"""Core primitives: errors, logging, settings, schema, repositories, models."""
