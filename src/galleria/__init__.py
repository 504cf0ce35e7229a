"""Galleria: self-hosted photo gallery backed by two object stores."""

__version__ = "0.1.0"
