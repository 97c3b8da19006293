"""Incremental feedback and end-of-session summary generation."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from callcoach.events import EventBus, EventKind
from callcoach.models import TranscriptEntry
from callcoach.prompt import FEEDBACK_PROMPT, SUMMARY_PROMPT, build_prompt
from callcoach.providers import BaseProvider

logger = logging.getLogger(__name__)


class FeedbackEngine:
    """Renders a transcript window into a prompt and asks the configured model.

    Provider failures (transport, auth, malformed body) are published as
    FEEDBACK_FAILED and turned into "" so a cycle is never aborted by them.
    """

    def __init__(
        self,
        provider: BaseProvider,
        events: Optional[EventBus] = None,
        feedback_prompt: str = FEEDBACK_PROMPT,
        summary_prompt: str = SUMMARY_PROMPT,
    ):
        self.provider = provider
        self.events = events or EventBus()
        self.feedback_prompt = feedback_prompt
        self.summary_prompt = summary_prompt

    async def generate(self, window: Sequence[TranscriptEntry], template: Optional[str] = None) -> str:
        """Feedback for the given window, or "" on any failure."""
        if not window:
            return ""
        prompt = build_prompt(template or self.feedback_prompt, window)
        try:
            text = await self.provider.generate(prompt)
        except Exception as e:
            self.events.publish(
                EventKind.FEEDBACK_FAILED, f"{self.provider!r}: {type(e).__name__}: {e}"
            )
            return ""
        return text or ""

    async def summarize(self, window: Sequence[TranscriptEntry]) -> str:
        """Closing summary using the summary template."""
        return await self.generate(window, template=self.summary_prompt)
