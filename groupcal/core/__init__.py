"""Core utilities: configuration, date keys, HTTP clients and logging."""
