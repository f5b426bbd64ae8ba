"""distributor: concatenate a source tree into a single distributable file."""

__version__ = "0.3.0"
