"""Constants for the rotation module.

This module centralizes wire-level values used across the rotation package.
"""

# Time constants (milliseconds unless otherwise noted)
DEFAULT_RETRY_AFTER_MS = 60_000
MAX_RETRY_AFTER_MS = 600_000
PROBE_TIMEOUT_SECONDS = 8.0

# Health scoring
MAX_HEALTH_SCORE = 100
RATE_LIMIT_PENALTY = 10
RECOVERY_BONUS = 10
SUCCESS_BONUS = 1

PUBLIC_DOMAIN = "github.com"
PUBLIC_COPILOT_API_URL = "https://api.githubcopilot.com"

# Tier 1: token exchange endpoint (reports free-tier quota)
TOKEN_EXCHANGE_PATH = "/copilot_internal/v2/token"
PUBLIC_TOKEN_EXCHANGE_URL = f"https://api.github.com{TOKEN_EXCHANGE_PATH}"
# Latest accepted quota reset date (9999-12-31T23:59:59Z), in seconds
MAX_QUOTA_RESET_SECONDS = 253_402_300_799

# Tier 2: identity lookup endpoint
PUBLIC_USER_API_URL = "https://api.github.com/user"
ENTERPRISE_USER_API_PATH = "/api/v3/user"

RATE_LIMIT_MESSAGE_PREFIX = "api rate limit exceeded"

# Dispatch headers
INTENT_HEADER = "Openai-Intent"
INTENT_VALUE = "conversation-edits"
INITIATOR_HEADER = "x-initiator"
VISION_HEADER = "Copilot-Vision-Request"
STRIPPED_REQUEST_HEADERS: tuple[str, ...] = ("x-api-key",)

# Accounts store
STORE_VERSION = 1
AUTH_MIRROR_KEY = "github-copilot"

# Client identity sent to the token exchange endpoint, which answers 404
# to callers it does not recognize
DEFAULT_CLIENT_VERSION = "0.2.4"
DEFAULT_EDITOR_VERSION = "vscode/1.99.3"
DEFAULT_EDITOR_PLUGIN_VERSION = "copilot-chat/0.26.7"
DEFAULT_PROBE_USER_AGENT = "GitHubCopilotChat/0.26.7"
DEFAULT_INTEGRATION_ID = "vscode-chat"
