"""
Conversation Summary

Writes a short clinical summary of a finished conversation. A failed call
yields a placeholder so teardown is never blocked.
"""
import logging
from typing import Any, Dict, List

from interpreter.config.constants import (
    SUMMARY_EMPTY_PLACEHOLDER,
    SUMMARY_FAILED_PLACEHOLDER,
    SUMMARY_MAX_TOKENS,
    SUMMARY_TEMPERATURE,
)
from interpreter.services.exceptions import CollaboratorError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a medical conversation summarizer. Provide clear, professional summaries "
    "of doctor-patient interactions."
)


def format_transcript(messages: List[Dict[str, Any]]) -> str:
    return "\n".join(
        f"{(message.get('speaker') or '').upper()}: {message.get('originalText') or ''} "
        f"(Translation: {message.get('translatedText') or ''})"
        for message in messages
    )


class ConversationSummarizer:
    def __init__(self, client):
        self.client = client

    async def summarize(self, messages: List[Dict[str, Any]]) -> str:
        prompt = (
            "Please provide a concise medical conversation summary for the following doctor-patient "
            "interaction. Focus on:\n"
            "1. Main medical concerns or symptoms mentioned\n"
            "2. Key information exchanged\n"
            "3. Any recommendations or next steps discussed\n"
            "4. Overall tone and outcome of the conversation\n\n"
            f"Conversation:\n{format_transcript(messages)}\n\n"
            "Please provide a clear, professional summary in 2-3 sentences:"
        )
        try:
            message = await self.client.complete(
                [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=SUMMARY_MAX_TOKENS,
                temperature=SUMMARY_TEMPERATURE,
            )
        except CollaboratorError as e:
            logger.error(f"[Summary] Summary generation failed: {e}")
            return SUMMARY_FAILED_PLACEHOLDER

        summary = (message.get("content") or "").strip()
        if not summary:
            return SUMMARY_EMPTY_PLACEHOLDER
        logger.info(f"[Summary] Generated summary ({len(summary)} chars)")
        return summary
