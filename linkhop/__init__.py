"""Linkhop: redirect serving and click intelligence for short links."""

__version__ = "0.1.0"
