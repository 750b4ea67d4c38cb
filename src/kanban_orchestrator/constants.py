"""Define shared constants for orchestrator state files and agent contracts."""

STATE_DIR_NAME = ".kanban_orchestrator"
CONFIG_FILE = "config.yaml"
SESSIONS_DIR_NAME = "sessions"
PLANS_DIR_NAME = "plans"
SCHEMA_VERSION = 1

WINDOWS_LOCK_BYTES = 1024

MARKER_COMPLETE = "STEP_COMPLETE"
MARKER_ERROR = "STEP_ERROR"

DEFAULT_AGENT_COMMAND = (
    "openclaw agent --local --session-id {session_id} --message {prompt} "
    "--timeout {timeout_seconds} --json"
)
DEFAULT_MODEL = "anthropic/claude-sonnet-4-5"
DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_OUTPUT_FOLDER = "~/Desktop/Claw Creations/outputs"

DEFAULT_HISTORY_LIMIT = 50
DEFAULT_HEALTH_RECENT_SECONDS = 30
DEFAULT_HEALTH_STALE_SECONDS = 120
DEFAULT_KILL_GRACE_SECONDS = 5
DEFAULT_COST_PER_TOKEN = 0.0000005

# Files modified this long before a session started still count as its output.
DISCOVERY_SLACK_SECONDS = 5

OUTPUT_PATH_ENV = "OPENCLAW_OUTPUT_PATH"
MODEL_ENV = "OPENCLAW_DEFAULT_MODEL"
