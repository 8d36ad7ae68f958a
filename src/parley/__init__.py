"""Parley: conversational orchestration over interchangeable model backends."""

__version__ = "0.1.0"
