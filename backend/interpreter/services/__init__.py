"""Interpreter Services.

This package contains the service modules that run a live interpretation
session.

Service Categories:
- Session: per-connection state machine, registry, heartbeat
- Upstream: realtime provider channel, handshake, wire messages
- Language: speaker/language classification, repeat commands
- Translation: translation directives and fragment relaying
- Conversation: persistence, intents, summaries, webhook
- Connection: client WebSocket adapter
- Presence: Redis-backed session liveness
"""
