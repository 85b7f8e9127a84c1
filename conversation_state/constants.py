"""Default limits and settings for the conversation state store."""

from __future__ import annotations

# --- Store Capacity ---
MAX_CONVERSATIONS = 1000
MAX_MESSAGES_PER_CONVERSATION = 500
TRIM_FRACTION = 0.1  # Share of the message cap dropped by the fallback trim
EVICTION_FRACTION = 0.2  # Share of conversations removed by a batch eviction

# --- Locking ---
LOCK_TIMEOUT_SECONDS = 5.0

# --- Periodic Reaping ---
RETENTION_SECONDS = 24 * 60 * 60

# --- Token Accounting ---
CHARS_PER_TOKEN = 4
DEFAULT_TOKENIZER_MODEL = "gpt-4o"
ESTIMATED_BYTES_PER_MESSAGE = 1024

# --- Compression ---
MIN_COMPRESSIBLE_MESSAGES = 10
SUMMARY_PREFIX = "[COMPRESSED SUMMARY - {count} messages]: "

# --- Health ---
TOKEN_OVERRUN_PENALTY = 0.2  # Continuity lost when a conversation exceeds max_tokens
