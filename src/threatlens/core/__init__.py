"""Core models, configuration, storage and scheduling."""
