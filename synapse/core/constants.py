"""
System-wide constants for Synapse.
"""

from enum import Enum


# =============================================================================
# Enums
# =============================================================================


class AnalysisStatus(str, Enum):
    """Analysis record lifecycle states."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisStatus.COMPLETED, AnalysisStatus.ERROR)


class MeetingType(str, Enum):
    """Meeting types with a specialised prompt."""

    DAILY_STANDUP = "dailyStandup"
    SPRINT_PLANNING = "sprintPlanning"
    RETROSPECTIVE = "retrospective"
    FEATURE_PLANNING = "featurePlanning"
    BUG_TRIAGE = "bugTriage"
    GENERAL = "general"


class IssueType(str, Enum):
    """Issue types understood by the tracker."""

    EPIC = "Epic"
    STORY = "Story"
    TASK = "Task"
    BUG = "Bug"
    IMPROVEMENT = "Improvement"


class Priority(str, Enum):
    """Tracker priorities."""

    HIGHEST = "Highest"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    LOWEST = "Lowest"


class Severity(str, Enum):
    """Audit event severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AnalysisSource(str, Enum):
    """Where the meeting notes came from."""

    MANUAL = "manual"
    DIRECT_INPUT = "direct_input"
    FILE_UPLOAD = "file_upload"


class APIKeyAction(str, Enum):
    """Actions accepted by manageAPIKeys."""

    LIST = "list"
    CREATE = "create"
    ROTATE = "rotate"
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    UPDATE = "update"
    DELETE = "delete"


# =============================================================================
# API Constants
# =============================================================================

API_VERSION = "v1"
API_PREFIX = f"/api/{API_VERSION}"

# Caller identity headers set by the hosting gateway
HEADER_ACCOUNT_ID = "X-Account-Id"
HEADER_CLOUD_ID = "X-Cloud-Id"
HEADER_PRINCIPAL_TYPE = "X-Principal-Type"
HEADER_TIMEZONE = "X-Timezone"
HEADER_LOCALE = "X-Locale"
HEADER_ERROR_ID = "X-Error-ID"

ADMIN_PRINCIPAL_TYPES = ("admin", "app")

# =============================================================================
# Content Constants
# =============================================================================

ALLOWED_NOTE_TAGS = ("p", "br", "strong", "em", "ul", "ol", "li", "h1", "h2", "h3")

TEXT_MIME_TYPE = "text/plain"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
ALLOWED_UPLOAD_TYPES = (TEXT_MIME_TYPE, DOCX_MIME_TYPE)

MAX_FILENAME_LENGTH = 255

# =============================================================================
# Tracker Constants
# =============================================================================

JIRA_SUMMARY_MAX_LENGTH = 255
JIRA_MAX_LABELS = 10
DEFAULT_PROJECT_CACHE_TTL = 24 * 60 * 60

# Claude Sonnet pricing per million tokens (input, output)
TOKEN_PRICE_INPUT = 3.0
TOKEN_PRICE_OUTPUT = 15.0

USAGE_RETENTION_SECONDS = 90 * 24 * 60 * 60

# =============================================================================
# Store Keys
# =============================================================================

ANALYSIS_KEY = "analysis:{analysis_id}"
USER_ANALYSES_KEY = "user:{user_id}:analyses"
USER_CONFIG_KEY = "user:{user_id}:config"
API_KEY_META_KEY = "claude:api_key:meta:{key_id}"
API_KEY_SECRET_KEY = "claude:api_key:{key_id}"
ACTIVE_API_KEYS_KEY = "claude:api_keys:active"
AUDIT_KEY = "audit:{date}:{event_id}"
AUDIT_BUCKET_PREFIX = "audit:{date}:"
RATE_LIMIT_KEY = "ratelimit:{user_id}:{action}:{window_start}"
DAILY_USAGE_KEY = "usage:daily:{date}"
JIRA_STATS_KEY = "jira:stats:{date}"
JIRA_DEFAULT_PROJECT_KEY = "jira:default_project"
ADMIN_CONFIG_KEY = "synapse:admin:config"
ADMIN_USERS_KEY = "admin:users"
