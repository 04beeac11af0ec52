"""
SDK for Generation Guard.

Provides governed access to the model provider.
"""

from .openai_client import GovernedOpenAI, GovernedCompletion

__all__ = ["GovernedOpenAI", "GovernedCompletion"]
