"""Agent roster and assignment policies."""

from .assignment import (
    agent_metrics,
    assign_agent,
    assign_agents_round_robin,
    compute_workload,
    delegate,
    match_agent,
    parse_task_id,
)
from .registry import Agent, AgentRoster, AssignmentHistory

__all__ = [
    "Agent",
    "AgentRoster",
    "AssignmentHistory",
    "agent_metrics",
    "assign_agent",
    "assign_agents_round_robin",
    "compute_workload",
    "delegate",
    "match_agent",
    "parse_task_id",
]
