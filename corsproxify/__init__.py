"""CORS Proxify: a CORS-enabling reverse proxy whose target URL is taken from the request path."""

__version__ = "0.1.0"
