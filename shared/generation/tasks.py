"""Request builders for the summarize and edit operations."""

from __future__ import annotations

from typing import Literal

from shared.generation.models import ANONYMOUS_USER, GenerationRequest

SUMMARY_MODEL = "gpt-3.5-turbo"
EDIT_MODEL = "gpt-4"

EDIT_SYSTEM_PROMPT = (
    "You are an assistant that edits text according to instructions. "
    "Apply the user's instruction to the provided text. Return only the "
    "complete revised text, without any extra explanation."
)


def summarize_request(
    text: str,
    *,
    max_length: int = 150,
    format: Literal["paragraph", "bullets"] = "paragraph",
    model: str = SUMMARY_MODEL,
    temperature: float = 0.5,
    user_id: str = ANONYMOUS_USER,
    use_cache: bool = True,
) -> GenerationRequest:
    shape = "a bullet-point list" if format == "bullets" else "a single paragraph"
    system_prompt = (
        f"Summarize the following text as {shape}. Keep the most important "
        f"information and use no more than {max_length} words."
    )
    return GenerationRequest(
        prompt=text,
        system_prompt=system_prompt,
        model=model,
        temperature=temperature,
        user_id=user_id,
        use_cache=use_cache,
    )


def edit_request(
    text: str,
    instruction: str,
    *,
    model: str = EDIT_MODEL,
    temperature: float = 0.5,
    user_id: str = ANONYMOUS_USER,
    use_cache: bool = True,
) -> GenerationRequest:
    return GenerationRequest(
        prompt=f"Original text:\n{text}\n\nInstruction:\n{instruction}\n\nRevised text:",
        system_prompt=EDIT_SYSTEM_PROMPT,
        model=model,
        temperature=temperature,
        user_id=user_id,
        use_cache=use_cache,
    )
