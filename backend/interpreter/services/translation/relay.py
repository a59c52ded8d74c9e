"""
Translation Relay

Issues one translation directive per finalized transcript and forwards the
streamed translation text and synthesized audio to the client, addressed by
the utterance's correlation id.

Per correlation id the client sees zero or more `translation` deltas
followed by exactly one final message. While the streamed text could still
turn out to be the invalid-language token, text and audio are held back so
an unsupported utterance never reaches the client as a translation.
"""
import logging
from typing import List, Optional

from interpreter.config.constants import INVALID_LANGUAGE_TOKEN
from interpreter.models.conversation import SpeakerRole
from interpreter.schemas.websocket_events import TranslationData, server_message
from interpreter.services.session.state import Session, Utterance
from interpreter.services.upstream.messages import build_translation_instructions, translation_event_id

logger = logging.getLogger(__name__)


def is_invalid_marker(text: str) -> bool:
    return INVALID_LANGUAGE_TOKEN in text


def could_be_invalid_marker(text: str) -> bool:
    """True while `text` is still a prefix of the invalid-language token."""
    candidate = text.strip().strip("\"'")
    return INVALID_LANGUAGE_TOKEN.startswith(candidate)


class TranslationRelay:
    """Relays one session's translations to its client."""

    def __init__(self, session: Session):
        self.session = session

    async def _send(self, message_type: str, data) -> bool:
        return await self.session.client.send_json(server_message(message_type, data))

    async def request(self, entry: Utterance):
        """Ask the upstream to translate `entry` into the other role's language."""
        config = self.session.language_config
        source = config.language_for(entry.speaker)
        target = config.target_language_for(entry.speaker)
        entry.target_language = target
        instructions = build_translation_instructions(entry.original_text, source, target)

        self.session.correlations.queue_translation(entry.item_id, translation_event_id(entry.item_id))
        await self.session.upstream.request_translation(instructions, entry.item_id)
        logger.info(f"[TranslationRelay] {self.session.id}: translating {entry.item_id} {source} -> {target}")

    async def delta(self, entry: Utterance, text: str):
        if entry.translation_finished or entry.suppressed or not text:
            return
        entry.translation_parts.append(text)
        if not entry.released:
            if could_be_invalid_marker(entry.translation_text):
                return
            entry.released = True

        unsent = entry.translation_text[entry.relayed_chars:]
        if unsent:
            entry.relayed_chars += len(unsent)
            await self._send("translation", TranslationData(id=entry.item_id, text=unsent, finished=False))
        await self._flush_audio(entry)

    async def finish(self, entry: Utterance, text: str):
        """Send the single authoritative final message for `entry`."""
        if entry.translation_finished:
            return
        entry.translation_finished = True
        entry.released = True
        await self._send("translation", TranslationData(id=entry.item_id, text=text, finished=True))
        await self._flush_audio(entry)

    async def retract(self, entry: Utterance):
        """
        Suppress `entry`: drop held audio and, if fragments already went out,
        close the client-side entry with an empty final.
        """
        if entry.translation_finished and entry.suppressed:
            return
        already_final = entry.translation_finished
        entry.suppressed = True
        entry.translation_finished = True
        entry.held_audio.clear()
        if entry.relayed_chars and not already_final:
            await self._send("translation", TranslationData(id=entry.item_id, text="", finished=True))

    async def audio(self, entry: Optional[Utterance], audio_b64: str):
        if not audio_b64:
            return
        if entry is None:
            await self._send("audio", audio_b64)
            return
        if entry.suppressed:
            return
        entry.audio_fragments.append(audio_b64)
        if entry.released:
            await self._send("audio", audio_b64)
        else:
            entry.held_audio.append(audio_b64)

    async def _flush_audio(self, entry: Utterance):
        held, entry.held_audio = entry.held_audio, []
        for fragment in held:
            await self._send("audio", fragment)

    def maybe_remember(self, entry: Utterance) -> bool:
        """Keep `entry`'s audio as its speaker's last synthesized turn once it is complete."""
        if entry.suppressed or entry.speaker is None:
            return False
        if not (entry.translation_finished and entry.audio_finished and entry.audio_fragments):
            return False
        self.session.last_audio_by_role[entry.speaker] = list(entry.audio_fragments)
        self.session.last_translated_role = entry.speaker
        return True

    async def replay(self, requesting_role: SpeakerRole) -> int:
        """Re-send the other role's last synthesized turn, verbatim and in order."""
        fragments: List[str] = self.session.last_audio_by_role.get(requesting_role.counterpart, [])
        if not fragments:
            logger.info(
                f"[TranslationRelay] {self.session.id}: no {requesting_role.counterpart.value} audio to replay"
            )
            return 0
        for fragment in fragments:
            await self._send("audio", fragment)
        logger.info(
            f"[TranslationRelay] {self.session.id}: replayed {len(fragments)} "
            f"{requesting_role.counterpart.value} fragments for {requesting_role.value}"
        )
        return len(fragments)
