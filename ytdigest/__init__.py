"""ytdigest — coalesce YouTube summary requests over a Redis Streams pipeline."""

__version__ = "0.1.0"
