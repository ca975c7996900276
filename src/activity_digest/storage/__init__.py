"""Persistence for repositories, analysis runs and weekly reports."""

from .db import Database

__all__ = ["Database"]
