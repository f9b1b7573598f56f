"""
AgentFramework: Core coordination layer for the dbautopilot control system.

Provides the agent base class (tool registry + result tracking) and the
event bus that routes events between the collector, gate, learner and
controller.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger("dbautopilot.framework")


class TaskStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class EventType(Enum):
    SNAPSHOT_COLLECTED = "snapshot_collected"
    ISSUE_DETECTED = "issue_detected"
    DECISION_LOGGED = "decision_logged"
    AUTO_FIX_APPLIED = "auto_fix_applied"
    AUTO_FIX_FAILED = "auto_fix_failed"
    ROLLBACK_EXECUTED = "rollback_executed"
    RECOMMENDATION_CREATED = "recommendation_created"
    PATTERN_LEARNED = "pattern_learned"
    PREDICTION_GENERATED = "prediction_generated"
    SELF_HEAL_EXECUTED = "self_heal_executed"
    EMERGENCY_MODE_ACTIVATED = "emergency_mode_activated"


@dataclass
class TaskResult:
    """Result of an agent tool execution."""
    task_id: str
    agent_name: str
    tool_name: str
    status: TaskStatus
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0

    def __str__(self):
        return f"[{self.status.value}] {self.agent_name}.{self.tool_name}: {self.message}"


@dataclass
class AgentTool:
    """Registered tool (method) within an agent."""
    name: str
    description: str
    handler: Callable
    risk_level: str = "low"  # low, medium, high
    requires_approval: bool = False


@dataclass
class Event:
    """Inter-agent event for coordination."""
    event_type: EventType
    source_agent: str
    data: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BaseAgent(ABC):
    """Base class for the collector, gate and learner agents."""

    max_results = 500

    def __init__(self, name: str, description: str):
        self.name = name
        self.description = description
        self.tools: dict[str, AgentTool] = {}
        self._framework: Optional[AgentFramework] = None
        self._results: list[TaskResult] = []
        # Lifetime counts; _results keeps only the newest max_results
        self._task_counts = {TaskStatus.SUCCESS: 0, TaskStatus.FAILED: 0}

    def register_tool(
        self,
        name: str,
        handler: Callable,
        description: str = "",
        risk_level: str = "low",
        requires_approval: bool = False,
    ) -> None:
        """Register a tool method with this agent."""
        self.tools[name] = AgentTool(
            name=name,
            description=description,
            handler=handler,
            risk_level=risk_level,
            requires_approval=requires_approval,
        )

    def register_tools(self) -> None:
        """Register this agent's tools. Agents without tools keep the default."""

    async def execute_tool(self, tool_name: str, *args, **kwargs):
        """
        Execute a registered tool and track its result.

        Synchronous handlers run in a worker thread so a blocking database
        call never stalls the event loop. Failures are recorded and re-raised:
        the caller decides whether a failure is local or cycle-level.
        """
        if tool_name not in self.tools:
            raise KeyError(f"Tool '{tool_name}' not found in {self.name}")

        tool = self.tools[tool_name]
        task_id = str(uuid.uuid4())[:8]
        start = time.time()
        logger.debug(f"[{self.name}] Executing: {tool_name}")

        try:
            if asyncio.iscoroutinefunction(tool.handler):
                value = await tool.handler(*args, **kwargs)
            else:
                value = await asyncio.to_thread(tool.handler, *args, **kwargs)
        except Exception as e:
            self._record(TaskResult(
                task_id=task_id,
                agent_name=self.name,
                tool_name=tool_name,
                status=TaskStatus.FAILED,
                message=f"Failed: {e}",
                duration_seconds=time.time() - start,
            ))
            raise

        duration = time.time() - start
        self._record(TaskResult(
            task_id=task_id,
            agent_name=self.name,
            tool_name=tool_name,
            status=TaskStatus.SUCCESS,
            message=f"Completed in {duration:.2f}s",
            duration_seconds=duration,
        ))
        return value

    def _record(self, result: TaskResult) -> None:
        self._results.append(result)
        if len(self._results) > self.max_results:
            del self._results[: len(self._results) - self.max_results]
        self._task_counts[result.status] = self._task_counts.get(result.status, 0) + 1
        if result.status == TaskStatus.FAILED:
            logger.warning(str(result))
        else:
            logger.debug(str(result))

    def emit_event(self, event_type: EventType, data: dict = None) -> None:
        """Emit an event for other agents to consume."""
        if self._framework:
            self._framework.dispatch_event(Event(
                event_type=event_type,
                source_agent=self.name,
                data=data or {},
            ))

    def get_results(self) -> list[TaskResult]:
        """Most recent task results, oldest first."""
        return list(self._results)

    def get_results_summary(self) -> dict:
        """Return summary of all task results since the agent started."""
        success = self._task_counts[TaskStatus.SUCCESS]
        failed = self._task_counts[TaskStatus.FAILED]
        total = success + failed
        return {
            "agent": self.name,
            "total_tasks": total,
            "successful": success,
            "failed": failed,
            "success_rate": f"{(success / total * 100):.1f}%" if total > 0 else "N/A",
        }


class AgentFramework:
    """
    Agent registry and event bus.

    Shared mutable state does not live here: the controller's
    SystemStateManager owns it. The framework only routes events and keeps
    an in-memory event log for reporting.
    """

    def __init__(self, max_event_log: int = 1000):
        self.agents: dict[str, BaseAgent] = {}
        self._event_handlers: dict[EventType, list[Callable]] = {}
        self._event_log: list[Event] = []
        self._max_event_log = max_event_log

    def register_agent(self, agent: BaseAgent) -> None:
        """Register an agent with the framework."""
        agent._framework = self
        agent.register_tools()
        self.agents[agent.name] = agent
        logger.info(f"Registered agent: {agent.name} ({len(agent.tools)} tools)")

    def subscribe(self, event_type: EventType, handler: Callable) -> None:
        """Subscribe to events from agents."""
        self._event_handlers.setdefault(event_type, []).append(handler)

    def dispatch_event(self, event: Event) -> None:
        """Dispatch an event to all subscribers."""
        self._event_log.append(event)
        if len(self._event_log) > self._max_event_log:
            del self._event_log[: len(self._event_log) - self._max_event_log]
        logger.debug(f"Event: {event.event_type.value} from {event.source_agent}")
        for handler in self._event_handlers.get(event.event_type, []):
            try:
                handler(event)
            except Exception:
                logger.error(
                    f"Event handler error for {event.event_type.value} "
                    f"from {event.source_agent}", exc_info=True,
                )

    def events(self, event_type: Optional[EventType] = None) -> list[Event]:
        if event_type is None:
            return list(self._event_log)
        return [e for e in self._event_log if e.event_type == event_type]

    def get_agent_summaries(self) -> dict:
        return {name: agent.get_results_summary() for name, agent in self.agents.items()}
