"""Callback contract and dispatch."""

from runtree.callbacks.base import BaseCallbackHandler
from runtree.callbacks.manager import (
    CallbackManager,
    ChainRunManager,
    LLMRunManager,
    ToolRunManager,
)

__all__ = [
    "BaseCallbackHandler",
    "CallbackManager",
    "ChainRunManager",
    "LLMRunManager",
    "ToolRunManager",
]
