"""
Application-wide constants for configuration and tuning.

Environment-dependent settings (DB, Redis, AWS) belong in settings.py.
This file is for operational parameters that rarely change between environments.
"""

# ==============================================================================
# DATABASE
# ==============================================================================

DB_POOL_SIZE: int = 10
DB_POOL_MAX_OVERFLOW: int = 20

# ==============================================================================
# VIDEO SESSIONS
# ==============================================================================

# Prefix for the provider-side external meeting id (appointment-<id>)
SESSION_EXTERNAL_ID_PREFIX: str = "appointment-"

# Endpoints a stored or freshly created session must carry to be joinable
REQUIRED_SESSION_ENDPOINTS: tuple = (
    "audio_host_url",
    "signaling_url",
    "turn_control_url",
)

# ==============================================================================
# MESSAGING
# ==============================================================================

# Default interval between message poll ticks (milliseconds)
DEFAULT_POLL_INTERVAL_MS: int = 2000

# Max messages fetched per poll / history load
MESSAGE_PAGE_SIZE: int = 100

# Conversation preview length before truncation with "..."
MESSAGE_PREVIEW_MAX_CHARS: int = 50

# Prefix for provider channel names (telemed-<ts>-<rand>)
CHANNEL_NAME_PREFIX: str = "telemed"

# Prefix for client-generated provisional message ids
PROVISIONAL_MESSAGE_ID_PREFIX: str = "local-"

# Minimum participants in any conversation
MIN_CONVERSATION_PARTICIPANTS: int = 2

# ==============================================================================
# REDIS CHANNELS
# ==============================================================================

CALL_STATUS_CHANNEL_PREFIX: str = "channel:call:"
