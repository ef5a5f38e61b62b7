# src/serialist/__init__.py
"""Serialist: long-form serialized fiction generation with narrative memory."""

__version__ = "0.1.0"
