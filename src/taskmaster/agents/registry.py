"""Agent roster and assignment history.

An *Agent* is a named worker (human or automated) that tasks can be assigned
to.  The roster lives in ``agents.json`` shaped ``{"agents": [...]}``; the
assignment history is a sibling ``{"history": [...]}`` document that grows by
one entry every time a task is delegated or manually assigned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from loguru import logger

from ..constants import AGENT_STATUS_AVAILABLE
from ..errors import InvalidInputError, NotFoundError
from ..io_utils import _atomic_write_json, _load_document
from ..utils import _coerce_int, _now_iso

AgentId = Union[int, str]

_AGENT_KEYS = ("id", "name", "status", "role", "capabilities", "dailyCapacity", "availability")


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

@dataclass
class Agent:
    name: str
    id: Optional[AgentId] = None
    status: str = AGENT_STATUS_AVAILABLE
    role: Optional[str] = None
    capabilities: list[str] = field(default_factory=list)
    daily_capacity: Optional[float] = None
    availability: float = 1.0
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_available(self) -> bool:
        return self.status == AGENT_STATUS_AVAILABLE

    @property
    def key(self) -> AgentId:
        """The value written by the round-robin backfill: id, else name."""
        return self.id if self.id is not None else self.name

    def matches(self, ident: Any) -> bool:
        text = str(ident)
        return text == self.name or (self.id is not None and text == str(self.id))

    @classmethod
    def validate_dict(cls, data: Any) -> list[str]:
        if not isinstance(data, dict):
            return ["Expected an agent object"]
        errors: list[str] = []
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append(f"agent {data.get('id')!r}: 'name' must be a non-empty string")
        caps = data.get("capabilities")
        if caps is not None and not isinstance(caps, list):
            errors.append(f"agent {name!r}: 'capabilities' must be an array")
        availability = data.get("availability")
        if availability is not None:
            if isinstance(availability, bool) or not isinstance(availability, (int, float)) \
                    or not 0 <= availability <= 1:
                errors.append(f"agent {name!r}: 'availability' must be between 0 and 1")
        return errors

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Agent":
        raw_id = data.get("id")
        ident: Optional[AgentId] = None
        if raw_id is not None:
            ident = raw_id if isinstance(raw_id, int) and not isinstance(raw_id, bool) else str(raw_id)
        capacity = data.get("dailyCapacity")
        availability = data.get("availability")
        return cls(
            name=str(data.get("name") or ""),
            id=ident,
            status=str(data.get("status") or AGENT_STATUS_AVAILABLE),
            role=data.get("role"),
            capabilities=[str(c) for c in (data.get("capabilities") or []) if c is not None],
            daily_capacity=float(capacity) if isinstance(capacity, (int, float))
            and not isinstance(capacity, bool) else None,
            availability=float(availability) if isinstance(availability, (int, float))
            and not isinstance(availability, bool) else 1.0,
            extra={k: v for k, v in data.items() if k not in _AGENT_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.id is not None:
            data["id"] = self.id
        data["name"] = self.name
        data["status"] = self.status
        if self.role is not None:
            data["role"] = self.role
        data["capabilities"] = list(self.capabilities)
        if self.daily_capacity is not None:
            data["dailyCapacity"] = self.daily_capacity
        data["availability"] = self.availability
        data.update(self.extra)
        return data


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------

class AgentRoster:
    """The ordered agent list from ``agents.json``.

    Roster order matters: it breaks ties in least-workload assignment and
    drives the modulo round-robin backfill.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.agents: list[Agent] = []
        self.extra: dict[str, Any] = {}
        # Entries that failed validation; written back verbatim.
        self.unparsed: list[Any] = []

    @classmethod
    def open(cls, path: Path) -> "AgentRoster":
        roster = cls(path)
        roster.load()
        return roster

    def load(self) -> None:
        data = _load_document(self.path, {})
        raw_agents = data.get("agents", [])
        if not isinstance(raw_agents, list):
            raise InvalidInputError(f"{self.path.name}: 'agents' must be an array")
        self.extra = {k: v for k, v in data.items() if k != "agents"}
        self.agents = []
        self.unparsed = []
        for raw in raw_agents:
            errors = Agent.validate_dict(raw)
            if errors:
                for err in errors:
                    logger.warning("Skipping malformed agent in {}: {}", self.path.name, err)
                self.unparsed.append(raw)
                continue
            self.agents.append(Agent.from_dict(raw))

    def save(self) -> None:
        doc = dict(self.extra)
        doc["agents"] = [a.to_dict() for a in self.agents] + list(self.unparsed)
        _atomic_write_json(self.path, doc)

    def __len__(self) -> int:
        return len(self.agents)

    def __iter__(self):
        return iter(self.agents)

    def get(self, ident: Any) -> Optional[Agent]:
        for agent in self.agents:
            if agent.matches(ident):
                return agent
        return None

    def require(self, ident: Any) -> Agent:
        agent = self.get(ident)
        if agent is None:
            raise NotFoundError(f"Agent {ident} not found", details={"id": ident})
        return agent

    def add(self, agent: Agent) -> Agent:
        if not agent.name.strip():
            raise InvalidInputError("Agent name is required")
        if self.get(agent.name) is not None:
            raise InvalidInputError(f"Agent {agent.name} already exists")
        if agent.id is None:
            numeric = [a.id for a in self.agents if isinstance(a.id, int)]
            numeric += [
                raw["id"] for raw in self.unparsed
                if isinstance(raw, dict) and isinstance(raw.get("id"), int) and not isinstance(raw["id"], bool)
            ]
            agent.id = max(numeric, default=0) + 1
        self.agents.append(agent)
        return agent

    def update(self, ident: Any, changes: dict[str, Any]) -> Agent:
        agent = self.require(ident)
        merged = agent.to_dict()
        merged.update(changes)
        merged["id"] = agent.id
        errors = Agent.validate_dict(merged)
        if errors:
            raise InvalidInputError("; ".join(errors), details={"errors": errors})
        updated = Agent.from_dict(merged)
        self.agents[self.agents.index(agent)] = updated
        return updated


# ---------------------------------------------------------------------------
# Assignment history
# ---------------------------------------------------------------------------

class AssignmentHistory:
    """Append-only record of ``{taskId, agent, timestamp}`` assignments."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def entries(self) -> list[dict[str, Any]]:
        data = _load_document(self.path, {})
        history = data.get("history", [])
        return [h for h in history if isinstance(h, dict)] if isinstance(history, list) else []

    def record(self, task_id: int, agent: str, *, source: str = "delegate") -> dict[str, Any]:
        entry = {"taskId": task_id, "agent": agent, "source": source, "timestamp": _now_iso()}
        data = _load_document(self.path, {})
        history = data.get("history")
        if not isinstance(history, list):
            history = []
        history.append(entry)
        data["history"] = history
        _atomic_write_json(self.path, data)
        logger.debug("Recorded assignment of task {} to {}", task_id, agent)
        return entry

    def for_task(self, task_id: int) -> list[dict[str, Any]]:
        return [h for h in self.entries() if _coerce_int(h.get("taskId")) == task_id]
