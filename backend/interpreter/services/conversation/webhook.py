"""
Webhook Notifier

Posts a `conversation_completed` event with the actions extracted during a
conversation. Delivery is best effort: failures are logged and the caller
carries on.
"""
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from interpreter.config.constants import WEBHOOK_SOURCE, WEBHOOK_USER_AGENT
from interpreter.config.settings import settings
from interpreter.services.conversation.intents import INTENT_TYPES

logger = logging.getLogger(__name__)

# Fields forwarded per intent type, in payload order
_ACTION_FIELDS: Dict[str, tuple] = {
    "medication": ("action", "medication"),
    "lab_order": ("labType", "tests", "urgency", "instructions"),
    "appointment": ("appointmentType", "timeframe", "specialty", "reason"),
    "diagnosis": ("condition", "severity", "status"),
    "treatment": ("treatment", "category", "details"),
    "vital_signs": ("vitals", "unit"),
}


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def build_actions(conversation: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flatten every message's intents into webhook actions, grouped by type."""
    by_type: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict((kind, []) for kind in INTENT_TYPES)
    for message in conversation.get("messages") or []:
        for intent in message.get("intents") or []:
            if intent.get("type") in by_type:
                by_type[intent["type"]].append(intent)

    actions = []
    for kind, intents in by_type.items():
        for intent in intents:
            action = {"type": kind}
            for name in _ACTION_FIELDS[kind]:
                action[name] = intent.get(name)
            action["confidence"] = intent.get("confidence")
            action["extractedAt"] = intent.get("extractedAt")
            actions.append(action)
    return actions


def action_label(action: Dict[str, Any]) -> str:
    detail = action.get("action") or action.get("appointmentType") or action.get("status") or "detected"
    return f"{action['type']}: {detail}"


def build_webhook_payload(conversation: Dict[str, Any]) -> Dict[str, Any]:
    actions = build_actions(conversation)
    counts: "OrderedDict[str, int]" = OrderedDict()
    for action in actions:
        counts[action["type"]] = counts.get(action["type"], 0) + 1

    start = _parse_time(conversation.get("startTime"))
    end = _parse_time(conversation.get("endTime"))
    duration = round((end - start).total_seconds() / 60) if start and end else None

    return {
        "event": "conversation_completed",
        "timestamp": datetime.utcnow().isoformat(),
        "conversation": {
            "id": conversation.get("id"),
            "sessionId": conversation.get("sessionId"),
            "patientName": conversation.get("patientName"),
            "doctorName": conversation.get("doctorName"),
            "startTime": conversation.get("startTime"),
            "endTime": conversation.get("endTime"),
            "summary": conversation.get("summary"),
            "totalMessages": conversation.get("totalMessageCount"),
            "status": conversation.get("status"),
        },
        "actions": actions,
        "analytics": {
            "totalActions": len(actions),
            "actionsByType": [{"type": kind, "count": count} for kind, count in counts.items()],
            "conversationDuration": duration,
        },
    }


class WebhookNotifier:
    """POST conversation_completed to the configured URL."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = settings.WEBHOOK_URL if url is None else url
        self.timeout = timeout or settings.WEBHOOK_TIMEOUT_SEC
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def notify(self, conversation: Dict[str, Any]) -> Optional[List[str]]:
        """
        Send the notification.

        Returns:
            Action labels to store on the conversation when delivery
            succeeded, None when disabled or failed
        """
        if not self.enabled:
            return None

        payload = build_webhook_payload(conversation)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": WEBHOOK_USER_AGENT,
            "X-Webhook-Source": WEBHOOK_SOURCE,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"[Webhook] ❌ Error sending webhook for {conversation.get('id')}: {e}")
            return None

        if not response.is_success:
            logger.error(f"[Webhook] ❌ Failed to send webhook. Status: {response.status_code}")
            return None

        logger.info(f"[Webhook] ✅ Sent {len(payload['actions'])} actions (status {response.status_code})")
        return [action_label(action) for action in payload["actions"]]
