"""Tracers that build run trees from callback events."""

from runtree.tracers.base import BaseTracer
from runtree.tracers.collector import CollectorTracer
from runtree.tracers.console import ConsoleTracer

__all__ = ["BaseTracer", "CollectorTracer", "ConsoleTracer"]
