"""Serverless sync handlers for the mobile-app backend."""

__version__ = "0.1.0"
