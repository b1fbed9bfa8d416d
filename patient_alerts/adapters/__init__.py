"""Narrow adapters to the outside world: record ingestion and alert sinks."""
