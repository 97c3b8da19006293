"""Prompt templates and transcript window rendering shared by all providers."""

from typing import Iterable

from callcoach.models import TranscriptEntry

CONTEXT_PLACEHOLDER = "{context}"

FEEDBACK_PROMPT = """You are an AI assistant providing real-time feedback during a phone call.

Transcript speaker roles:
- [microphone]: The user (the person speaking into the microphone)
- [system]: The other party on the call (captured from system audio)

Recent conversation:
{context}

Provide brief, actionable feedback for the user (microphone speaker) on their communication. Focus on:
- Tone and clarity
- Listening vs. talking balance
- Key points they should address
- Engagement level

Keep feedback concise (1-2 sentences max) and supportive."""

SUMMARY_PROMPT = """You are an AI assistant reviewing a phone call that has just ended.

Transcript speaker roles:
- [microphone]: The user (the person speaking into the microphone)
- [system]: The other party on the call (captured from system audio)

Full conversation:
{context}

Write a short closing summary for the user: the main topics discussed, any commitments or
open questions, and one or two suggestions for their next conversation.
Keep it under 150 words."""


def render_window(entries: Iterable[TranscriptEntry]) -> str:
    """Render entries as `[speaker]: text` lines, oldest first."""
    return "\n".join(f"[{entry.label}]: {entry.text}" for entry in entries)


def build_prompt(template: str, entries: Iterable[TranscriptEntry]) -> str:
    """Substitute the rendered window into the template's first `{context}` token.

    str.format is avoided on purpose: user-supplied templates may contain other braces.
    """
    return template.replace(CONTEXT_PLACEHOLDER, render_window(entries), 1)
