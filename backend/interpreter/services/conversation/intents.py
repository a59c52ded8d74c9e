"""
Intent Extraction - structured medical actions from doctor utterances

Uses function calling on the chat model to pull medication, lab order,
appointment, diagnosis, treatment and vital sign intents out of a finalized
message pair. Only doctor messages are analysed. Any failure yields no
intents; extraction never interrupts the live session.

Usage:
    extractor = IntentExtractor(get_llm_client())
    intents = await extractor.extract(
        "I'm prescribing amoxicillin 500mg twice daily",
        "Le receto amoxicilina 500mg dos veces al día",
        SpeakerRole.DOCTOR,
        context=["patient: Me duele la garganta"],
    )
"""
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from interpreter.config.constants import (
    INTENT_CONFIDENCE_THRESHOLD,
    INTENT_EXTRACTION_MAX_TOKENS,
    INTENT_EXTRACTION_TEMPERATURE,
    MAX_INTENTS_PER_MESSAGE,
)
from interpreter.models.conversation import SpeakerRole
from interpreter.services.exceptions import CollaboratorError

logger = logging.getLogger(__name__)

INTENT_TYPES = ("medication", "lab_order", "appointment", "diagnosis", "treatment", "vital_signs")

EXTRACTION_FUNCTION = {
    "name": "extract_medical_intents",
    "description": "Extract structured medical intents and actions from doctor-patient conversations",
    "parameters": {
        "type": "object",
        "properties": {
            "intents": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string", "enum": list(INTENT_TYPES)},
                        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                        "data": {
                            "type": "object",
                            "properties": {
                                "medication": {
                                    "type": "object",
                                    "properties": {
                                        "name": {"type": "string"},
                                        "dosage": {"type": "string"},
                                        "frequency": {"type": "string"},
                                        "duration": {"type": "string"},
                                        "route": {"type": "string"},
                                    },
                                },
                                "action": {"type": "string", "enum": ["prescribe", "discontinue", "modify", "refill"]},
                                "labType": {"type": "string"},
                                "tests": {"type": "array", "items": {"type": "string"}},
                                "urgency": {"type": "string", "enum": ["routine", "urgent", "stat"]},
                                "instructions": {"type": "string"},
                                "appointmentType": {"type": "string", "enum": ["schedule", "reschedule", "cancel"]},
                                "timeframe": {"type": "string"},
                                "specialty": {"type": "string"},
                                "reason": {"type": "string"},
                                "condition": {"type": "string"},
                                "severity": {"type": "string", "enum": ["mild", "moderate", "severe"]},
                                "status": {"type": "string", "enum": ["suspected", "confirmed", "ruled_out"]},
                                "treatment": {"type": "string"},
                                "category": {"type": "string", "enum": ["procedure", "therapy", "referral", "lifestyle"]},
                                "details": {"type": "string"},
                                "vitals": {"type": "object"},
                                "unit": {"type": "string", "enum": ["metric", "imperial"]},
                            },
                        },
                    },
                    "required": ["type", "confidence", "data"],
                },
            },
        },
        "required": ["intents"],
    },
}

SYSTEM_PROMPT = (
    "You are a medical intent extraction system. Extract structured medical intents from "
    "doctor-patient conversations.\n\n"
    "Focus on actionable items that a doctor might say, such as:\n"
    "- \"I'm prescribing you amoxicillin 500mg twice daily for 10 days\"\n"
    "- \"Let's order a CBC and basic metabolic panel\"\n"
    "- \"I want to schedule you for a follow-up in 2 weeks\"\n"
    "- \"Based on your symptoms, I suspect you have pneumonia\"\n"
    "- \"I recommend physical therapy for your back pain\"\n\n"
    "Only extract intents with high confidence when the text clearly indicates an action or decision. "
    "Set confidence lower for ambiguous or conversational statements."
)


def _medication(data):
    return {"medication": data.get("medication") or {}, "action": data.get("action") or "prescribe"}


def _lab_order(data):
    return {
        "labType": data.get("labType") or "unknown",
        "tests": list(data.get("tests") or []),
        "urgency": data.get("urgency"),
        "instructions": data.get("instructions"),
    }


def _appointment(data):
    return {
        "appointmentType": data.get("appointmentType") or "schedule",
        "timeframe": data.get("timeframe"),
        "specialty": data.get("specialty"),
        "reason": data.get("reason"),
    }


def _diagnosis(data):
    return {
        "condition": data.get("condition") or "unknown",
        "severity": data.get("severity"),
        "status": data.get("status") or "suspected",
    }


def _treatment(data):
    return {
        "treatment": data.get("treatment") or "unknown",
        "category": data.get("category") or "procedure",
        "details": data.get("details"),
    }


def _vital_signs(data):
    return {"vitals": data.get("vitals") or {}, "unit": data.get("unit") or "metric"}


_BUILDERS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "medication": _medication,
    "lab_order": _lab_order,
    "appointment": _appointment,
    "diagnosis": _diagnosis,
    "treatment": _treatment,
    "vital_signs": _vital_signs,
}


def build_intent(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Typed intent dict from one function-call item, or None for unknown types."""
    builder = _BUILDERS.get(raw.get("type"))
    if builder is None:
        return None
    intent = {
        "type": raw["type"],
        "confidence": float(raw.get("confidence") or 0.0),
        "extractedAt": datetime.utcnow().isoformat(),
        "metadata": raw.get("metadata") or {},
    }
    intent.update(builder(raw.get("data") or {}))
    return intent


def filter_intents(
    raw_intents: Iterable[Dict[str, Any]],
    threshold: float = INTENT_CONFIDENCE_THRESHOLD,
    limit: int = MAX_INTENTS_PER_MESSAGE,
    enabled: Iterable[str] = INTENT_TYPES,
) -> List[Dict[str, Any]]:
    enabled = set(enabled)
    kept: List[Dict[str, Any]] = []
    for raw in raw_intents:
        if not isinstance(raw, dict):
            continue
        if float(raw.get("confidence") or 0.0) < threshold:
            logger.debug(f"[IntentRecognition] Below threshold: {raw.get('type')} ({raw.get('confidence')})")
            continue
        if raw.get("type") not in enabled:
            continue
        intent = build_intent(raw)
        if intent is not None:
            kept.append(intent)
        if len(kept) >= limit:
            break
    return kept


def intent_key(intent: Dict[str, Any]) -> str:
    """Identity of an intent for de-duplication across messages."""
    kind = intent.get("type")
    if kind == "medication":
        return f"{kind}:{(intent.get('medication') or {}).get('name', '')}:{intent.get('action') or ''}"
    if kind == "lab_order":
        tests = ",".join(sorted(intent.get("tests") or []))
        return f"{kind}:{intent.get('labType') or ''}:{tests}"
    if kind == "appointment":
        return (
            f"{kind}:{intent.get('appointmentType') or ''}:"
            f"{intent.get('timeframe') or ''}:{intent.get('specialty') or ''}"
        )
    if kind == "diagnosis":
        return f"{kind}:{intent.get('condition') or ''}:{intent.get('status') or ''}"
    if kind == "treatment":
        return f"{kind}:{intent.get('treatment') or ''}:{intent.get('category') or ''}"
    if kind == "vital_signs":
        return f"{kind}:{json.dumps(intent.get('vitals') or {}, sort_keys=True)}"
    return f"{kind}:{json.dumps(intent, sort_keys=True, default=str)}"


def deduplicate_intents(intents: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep one intent per key, the one with the highest confidence."""
    best: Dict[str, Dict[str, Any]] = {}
    for intent in intents:
        key = intent_key(intent)
        existing = best.get(key)
        if existing is None or intent.get("confidence", 0) > existing.get("confidence", 0):
            best[key] = intent
    return list(best.values())


class IntentExtractor:
    """Extract intents from one finalized message pair."""

    def __init__(self, client, threshold: float = INTENT_CONFIDENCE_THRESHOLD, limit: int = MAX_INTENTS_PER_MESSAGE):
        self.client = client
        self.threshold = threshold
        self.limit = limit

    @staticmethod
    def build_prompt(original_text: str, translated_text: str, speaker: SpeakerRole, context: List[str]) -> str:
        prefix = ""
        if context:
            prefix = "Previous conversation context:\n" + "\n".join(context) + "\n\n"
        return (
            f"{prefix}Analyze the following medical conversation message and extract any structured "
            "intents or actions:\n\n"
            f"Original text: \"{original_text}\"\n"
            f"Translated text: \"{translated_text}\"\n"
            f"Speaker: {speaker.value}\n\n"
            "Only extract intents that are clearly actionable and have sufficient detail. "
            "Be conservative with confidence scores."
        )

    async def extract(
        self,
        original_text: str,
        translated_text: str,
        speaker: SpeakerRole,
        context: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        if speaker is not SpeakerRole.DOCTOR:
            return []

        try:
            message = await self.client.complete(
                [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": self.build_prompt(original_text, translated_text, speaker, context or [])},
                ],
                max_tokens=INTENT_EXTRACTION_MAX_TOKENS,
                temperature=INTENT_EXTRACTION_TEMPERATURE,
                tools=[{"type": "function", "function": EXTRACTION_FUNCTION}],
                tool_choice={"type": "function", "function": {"name": EXTRACTION_FUNCTION["name"]}},
            )
        except CollaboratorError as e:
            logger.error(f"[IntentRecognition] Extraction failed: {e}")
            return []

        tool_calls = message.get("tool_calls") or []
        if not tool_calls:
            logger.info("[IntentRecognition] No function call response received")
            return []
        try:
            arguments = json.loads(tool_calls[0]["function"]["arguments"])
            raw_intents = arguments.get("intents") or []
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"[IntentRecognition] Malformed function call arguments: {e}")
            return []

        intents = filter_intents(raw_intents, self.threshold, self.limit)
        logger.info(f"[IntentRecognition] Extracted {len(intents)} intents from message")
        return intents
