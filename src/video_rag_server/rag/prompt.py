"""
Prompt Assembly

Turns retrieved chunks, video titles and conversation history into the single
prompt sent to the generator. Pure formatting, no I/O.
"""

from __future__ import annotations

from typing import Iterable, Protocol

from .retrieval import RetrievedChunk


class HistoryMessage(Protocol):
    role: str
    content: str


def build_prompt(
    chunks: Iterable[RetrievedChunk],
    video_titles: Iterable[str],
    history: Iterable[HistoryMessage],
    question: str,
) -> str:
    """
    Build the generation prompt.

    ``history`` must already be ordered oldest first and bounded by the
    caller. Empty inputs produce empty sections.
    """
    return "\n".join(
        [
            f"We are discussing the YouTube videos: {', '.join(video_titles)}",
            "Use the transcript snippets and conversation history to ground the answer.",
            "If information is missing, be honest about not knowing rather than guessing.",
            "",
            "Transcript snippets:",
            "\n".join(f"- {chunk.title}: {chunk.content}" for chunk in chunks),
            "",
            "Relevant conversation memories:",
            "\n".join(f"{message.role}: {message.content}" for message in history),
            "",
            f"User question: {question}",
            "",
            "Craft a helpful and concise reply that addresses the user's question "
            "based on the provided context.",
        ]
    )
