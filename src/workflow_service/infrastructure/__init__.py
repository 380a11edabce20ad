"""Infrastructure: database access and repositories."""
