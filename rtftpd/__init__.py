"""TFTP server with windowed transfers and a caching HTTP proxy backend."""

__version__ = "0.1.0"