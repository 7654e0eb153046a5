"""
Generation Module - Catalog replenishment from a language model.

Components:
- orchestrator: Gemini call, retries, single-flight, persistence
- json_repair: Tolerant parsing of model output
- sanitizer: Structure fix, taxonomy repair and validation
- knowledge_client: Retrieval snippets that ground generated questions
- prompts: Prompt templates
"""

from certprep.generation.knowledge_client import KnowledgeClient, KnowledgeSnippet
from certprep.generation.orchestrator import (
    ContentGenerationOrchestrator,
    GeminiQuestionModel,
    GenerationMethod,
    GenerationRequest,
    GenerationResult,
)

__all__ = [
    "ContentGenerationOrchestrator",
    "GeminiQuestionModel",
    "GenerationMethod",
    "GenerationRequest",
    "GenerationResult",
    "KnowledgeClient",
    "KnowledgeSnippet",
]
