"""AI decision client -- prompt composition, chat-completion call and reply parsing."""

from autotrader.ai.client import AIClient, AIProvider, resolve_provider
from autotrader.ai.prompts import PromptBuilder

__all__ = ["AIClient", "AIProvider", "PromptBuilder", "resolve_provider"]
