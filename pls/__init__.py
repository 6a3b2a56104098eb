"""pls - a small package manager for prebuilt binaries."""

__version__ = "0.3.0"
