"""Shared constants for mailpilot."""

from __future__ import annotations

DEFAULT_BACKOFF_SCHEDULE = (5.0, 15.0, 30.0)
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_ENGINE_TIMEOUT = 30.0

MONITOR_INTERVAL_SECONDS = 300
HEALTH_LOOKBACK_HOURS = 24
# two automation runs (5 min interval) plus buffer
FIRST_EXECUTION_WINDOW_MINUTES = 10
DEFAULT_SWEEP_CONCURRENCY = 20
METRICS_EXECUTION_LIMIT = 100

SUCCESS_EXECUTION_STATUSES = frozenset({"success", "completed"})
PENDING_EXECUTION_STATUSES = frozenset({"new", "queued", "running", "waiting"})

DEFAULT_CATEGORY = "general"
CATEGORIZE_NODE = "Categorize Email"
NOTIFY_NODE = "Notify Team"

OAUTH_EXPIRED = "expired"
OAUTH_VALID = "valid"

ONBOARDING_STEPS = (
    "email_verified",
    "business_type_selected",
    "mailbox_connected",
    "business_info_provided",
    "workflow_deployed",
    "workflow_verified",
    "first_execution_observed",
)

TEMPLATE_REAUTH = "oauth-reauth"
TEMPLATE_DEPLOYMENT_FAILURE = "deployment-failure"
TEMPLATE_ONBOARDING_COMPLETE = "onboarding-complete"
