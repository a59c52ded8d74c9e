"""
Application-wide constants for configuration and tuning.

This file centralizes all magic numbers and configuration values
to enable easy tuning and maintain consistency across the backend.

Note: Environment-dependent settings (DB, Redis, API keys, timeouts that
differ between deployments) belong in settings.py. This file is for
operational parameters that rarely change between environments.
"""

# ==============================================================================
# AUDIO CONFIGURATION - CAPTURE (client -> server -> upstream)
# ==============================================================================

# Sample rate for captured microphone audio (Hz)
AUDIO_SAMPLE_RATE: int = 16000

# Bytes per sample (16-bit PCM = 2 bytes)
AUDIO_BYTES_PER_SAMPLE: int = 2

# Bytes per second of captured audio (sample_rate * bytes_per_sample)
AUDIO_BYTES_PER_SECOND: int = AUDIO_SAMPLE_RATE * AUDIO_BYTES_PER_SAMPLE

# Samples per encoder frame (one audio render quantum)
ENCODER_FRAME_SAMPLES: int = 128

# ==============================================================================
# AUDIO CONFIGURATION - PLAYBACK (upstream -> client)
# ==============================================================================

# Sample rate of synthesized audio returned by the provider (Hz)
PLAYBACK_SAMPLE_RATE: int = 24000

# Extra time allowed on top of a fragment's duration before it is
# considered stuck and the playback queue moves on (seconds)
PLAYBACK_STALL_GRACE_SEC: float = 2.0

# ==============================================================================
# AUDIO BUFFERING - CLIENT AGGREGATOR
# ==============================================================================

# Target network chunk duration (milliseconds of 16 kHz mono PCM16)
AUDIO_CHUNK_TARGET_MS: int = 100

# Target network chunk size in bytes (3200 bytes at 16kHz mono 16-bit)
AUDIO_CHUNK_TARGET_BYTES: int = AUDIO_BYTES_PER_SECOND * AUDIO_CHUNK_TARGET_MS // 1000

# Max time a partial chunk is held before it is flushed anyway (seconds)
AUDIO_FLUSH_TIMEOUT_SEC: float = 0.2

# ==============================================================================
# SPEECH ACTIVITY (UI indicator only, never gates transmission)
# ==============================================================================

# Normalized mean absolute amplitude above which a frame counts as speech
SPEECH_VOLUME_THRESHOLD: float = 0.01

# Silence needed before the speaking indicator turns off (seconds)
SPEECH_SILENCE_DEBOUNCE_SEC: float = 0.5

# ==============================================================================
# UPSTREAM TURN DETECTION
# ==============================================================================

TURN_DETECTION_TYPE: str = "server_vad"
TURN_DETECTION_THRESHOLD: float = 0.5
TURN_DETECTION_PREFIX_PADDING_MS: int = 300
TURN_DETECTION_SILENCE_DURATION_MS: int = 500

# Upstream audio format for both directions
UPSTREAM_AUDIO_FORMAT: str = "pcm16"

# Token the provider emits when the input is in neither configured language.
# Shared by the transcription prompt and every translation directive.
INVALID_LANGUAGE_TOKEN: str = "INVALID_LANGUAGE"

# ==============================================================================
# LANGUAGES & ROLES
# ==============================================================================

DEFAULT_DOCTOR_LANGUAGE: str = "english"
DEFAULT_PATIENT_LANGUAGE: str = "spanish"

# Role shown on transcript deltas before the speaker is resolved
DETECTING_ROLE: str = "detecting"

# ==============================================================================
# LLM COLLABORATORS
# ==============================================================================

LANGUAGE_DETECTION_MAX_TOKENS: int = 10
LANGUAGE_DETECTION_TEMPERATURE: float = 0.1

INTENT_EXTRACTION_MAX_TOKENS: int = 1000
INTENT_EXTRACTION_TEMPERATURE: float = 0.2

# Minimum confidence for an extracted intent to be kept
INTENT_CONFIDENCE_THRESHOLD: float = 0.7

# Maximum intents kept per message
MAX_INTENTS_PER_MESSAGE: int = 3

# Previous messages given to the intent extractor as context
INTENT_CONTEXT_MESSAGES: int = 5

SUMMARY_MAX_TOKENS: int = 200
SUMMARY_TEMPERATURE: float = 0.3

# Placeholder stored when the summary call fails
SUMMARY_FAILED_PLACEHOLDER: str = "Summary generation failed"

# Placeholder stored when the model answers with an empty summary
SUMMARY_EMPTY_PLACEHOLDER: str = "Unable to generate summary"

# ==============================================================================
# WEBHOOK
# ==============================================================================

WEBHOOK_USER_AGENT: str = "AI-Medical-Interpreter/1.0"
WEBHOOK_SOURCE: str = "ai-medical-interpreter"

# ==============================================================================
# DATABASE CONNECTION POOL
# ==============================================================================

# SQLAlchemy connection pool size
DB_POOL_SIZE: int = 10

# SQLAlchemy max overflow connections
DB_POOL_MAX_OVERFLOW: int = 20

# ==============================================================================
# API PAGINATION & LIMITS
# ==============================================================================

# Number of conversations returned by the conversation list endpoint
CONVERSATION_LIST_LIMIT: int = 100

# ==============================================================================
# PRESENCE
# ==============================================================================

# Presence key TTL as a multiple of the heartbeat interval
PRESENCE_TTL_HEARTBEATS: int = 2
