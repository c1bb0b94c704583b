"""Converge the AWS topology serving a static site."""

__version__ = "0.1.0"
