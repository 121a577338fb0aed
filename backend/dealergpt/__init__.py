"""
DealerGPT package.

Conversational assistant over the dealership's live data:
  - aggregator   concurrent fan-out into one business snapshot
  - prompts      system prompt, bounded history window, greetings
  - llm          OpenAI chat client behind a small protocol
  - insights     rule-based proactive findings
  - memory       conversations, memory entries and insights
  - service      full and simple conversation pipelines

Usage:
    from dealergpt import create_conversation_service

    service = create_conversation_service(settings, AsyncSessionLocal)
    result = await service.process_conversation("How is stock looking?", user_id=1)
    result.response.message, result.degraded_reason
"""

from dealergpt.aggregator import AggregationError, AggregationTimeout, DealershipAggregator
from dealergpt.llm import ChatClient, LLMError, LLMTimeout, OpenAIChatClient
from dealergpt.memory import MemoryStore
from dealergpt.schemas import ConversationResult, DealerGPTResponse, DegradedReason
from dealergpt.service import ConversationService, SimpleConversationService, create_conversation_service

__all__ = [
    "AggregationError",
    "AggregationTimeout",
    "DealershipAggregator",
    "ChatClient",
    "LLMError",
    "LLMTimeout",
    "OpenAIChatClient",
    "MemoryStore",
    "ConversationResult",
    "DealerGPTResponse",
    "DegradedReason",
    "ConversationService",
    "SimpleConversationService",
    "create_conversation_service",
]
