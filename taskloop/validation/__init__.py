"""
TaskLoop validation module.

This module provides configuration validation and management.
"""

from taskloop.validation.config import Config, TaskLoopConfig

__all__ = ["Config", "TaskLoopConfig"]
