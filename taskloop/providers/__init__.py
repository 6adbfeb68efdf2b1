"""
TaskLoop providers module.

This module provides the completion clients used by the agents.
"""

from taskloop.providers.base import Provider, ProviderFactory, ProviderResponse

__all__ = ["Provider", "ProviderFactory", "ProviderResponse"]
