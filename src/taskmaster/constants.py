STATE_DIR_NAME = ".taskmaster"
CONFIG_FILE = "config.yaml"
TASKS_FILE = "tasks/tasks.json"
AGENTS_FILE = "agents.json"
SPRINTS_FILE = "sprints.json"
ASSIGNMENT_HISTORY_FILE = "assignment-history.json"
ACTIVITY_LOG_FILE = "logs/activity.jsonl"
LOCK_SUFFIX = ".lock"

DEFAULT_SCHEMA_VERSION = 1
DEFAULT_AUTO_PLAN_LIMIT = 5
WINDOWS_LOCK_BYTES = 4096

TASK_STATUS_PENDING = "pending"
TASK_STATUS_IN_PROGRESS = "in-progress"
TASK_STATUS_REVIEW = "review"
TASK_STATUS_DONE = "done"
TASK_STATUS_BLOCKED = "blocked"
TASK_STATUS_DEFERRED = "deferred"
TASK_STATUS_CANCELLED = "cancelled"

# Legacy alias still written by older sprint tooling.
TASK_STATUS_COMPLETED_ALIAS = "completed"

TASK_COMPLETION_STATUSES = {TASK_STATUS_DONE, TASK_STATUS_COMPLETED_ALIAS}

# Parent statuses that propagate to unfinished subtasks.
TASK_CASCADE_STATUSES = {TASK_STATUS_DONE, TASK_STATUS_CANCELLED}

AGENT_STATUS_AVAILABLE = "available"
AGENT_STATUS_BUSY = "busy"

# Optional strict transition table; the default policy allows any move.
STRICT_TRANSITIONS: dict[str, set[str]] = {
    TASK_STATUS_PENDING: {
        TASK_STATUS_IN_PROGRESS,
        TASK_STATUS_BLOCKED,
        TASK_STATUS_DEFERRED,
        TASK_STATUS_CANCELLED,
    },
    TASK_STATUS_IN_PROGRESS: {
        TASK_STATUS_REVIEW,
        TASK_STATUS_DONE,
        TASK_STATUS_BLOCKED,
        TASK_STATUS_PENDING,
        TASK_STATUS_DEFERRED,
        TASK_STATUS_CANCELLED,
    },
    TASK_STATUS_REVIEW: {
        TASK_STATUS_DONE,
        TASK_STATUS_IN_PROGRESS,
        TASK_STATUS_BLOCKED,
        TASK_STATUS_CANCELLED,
    },
    TASK_STATUS_BLOCKED: {
        TASK_STATUS_PENDING,
        TASK_STATUS_IN_PROGRESS,
        TASK_STATUS_DEFERRED,
        TASK_STATUS_CANCELLED,
    },
    TASK_STATUS_DEFERRED: {TASK_STATUS_PENDING, TASK_STATUS_CANCELLED},
    TASK_STATUS_DONE: {TASK_STATUS_REVIEW},  # reopen through review
    TASK_STATUS_CANCELLED: {TASK_STATUS_PENDING},  # restore
}

ACTIVITY_TASK_CREATED = "task_created"
ACTIVITY_TASK_UPDATED = "task_updated"
ACTIVITY_TASK_STATUS_CHANGED = "task_status_changed"
ACTIVITY_TASK_DELETED = "task_deleted"
ACTIVITY_SUBTASK_STATUS_CHANGED = "subtask_status_changed"
ACTIVITY_AGENT_ASSIGNED = "agent_assigned"
