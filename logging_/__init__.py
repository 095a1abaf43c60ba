"""Structured logging setup."""

from logging_.structured import (
    JsonFormatter,
    TEXT_FORMAT,
    setup_logging,
)

__all__ = [
    "JsonFormatter",
    "TEXT_FORMAT",
    "setup_logging",
]
