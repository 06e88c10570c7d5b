"""Language-model boundary producing typed suggestion drafts."""

from suggestion_engine.generation.adapter import GenerationAdapter
from suggestion_engine.generation.llm import (
    LLMClient,
    OpenAIChatCompletionsClient,
    build_llm_client,
)
from suggestion_engine.generation.parsing import extract_json_object
from suggestion_engine.generation.templates import PromptTemplate, render

__all__ = [
    "GenerationAdapter",
    "LLMClient",
    "OpenAIChatCompletionsClient",
    "PromptTemplate",
    "build_llm_client",
    "extract_json_object",
    "render",
]
