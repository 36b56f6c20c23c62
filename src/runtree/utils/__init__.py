"""Utility helpers for runtree."""

from runtree.utils.env import get_runtime_environment
from runtree.utils.uuid7 import generate_uuid7

__all__ = ["generate_uuid7", "get_runtime_environment"]
