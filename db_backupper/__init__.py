"""Back up a PostgreSQL database running in Docker to S3 and restore it."""

__version__ = "2.0.0"
