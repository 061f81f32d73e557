"""
Logging configuration and utilities for the seqtrade trading core.
"""
from .config import build_processors, build_renderer, configure_logging, get_logger

__all__ = ["build_processors", "build_renderer", "configure_logging", "get_logger"]
