"""Process-wide defaults for triageflow workflows."""

DEFAULT_STEP_TIMEOUT = 300.0
DEFAULT_MAX_RETRIES = 1
MAX_REPEAT_TIMES = 50
DEFAULT_HISTORY_WINDOW = 20

SESSION_STARTED_MESSAGE = "Service triage session started"
DEMO_NOTE = "demo note"
MEMORY_MODE = "LIMITED_WINDOW"
