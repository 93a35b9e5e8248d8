# Prompt templates for the docchat pipeline.

from .system_prompt import (
    ANSWER_SYSTEM,
    CLASSIFIER_SYSTEM,
    build_classifier_prompt,
    build_grounded_prompt,
    build_history_preview,
    build_summary_instruction,
)

__all__ = [
    "ANSWER_SYSTEM",
    "CLASSIFIER_SYSTEM",
    "build_classifier_prompt",
    "build_grounded_prompt",
    "build_history_preview",
    "build_summary_instruction",
]
