"""Domain models and error types, free of service dependencies."""
