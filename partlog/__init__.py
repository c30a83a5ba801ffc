"""A partitioned message log broker over TCP, with its wire format, storage and a sample producer."""

__version__ = "0.1.0"