"""
Rule-based routing.

Rules are evaluated in descending priority order. The first enabled rule
whose condition matches and whose action returns an agent wins. When no
rule produces an agent, routing falls back to a default balancer.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from hitl_dispatch.errors import ValidationError
from hitl_dispatch.routing.strategy import LoadBalancer, create_balancer
from hitl_dispatch.routing.types import AgentInfo, BalancerStrategy, RouteResult, TaskRequest
from hitl_dispatch.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from hitl_dispatch.telemetry.metrics import RoutingMetricsCollector

logger = get_logger(__name__)

DEFAULT_STRATEGIES = (
    BalancerStrategy.ROUND_ROBIN,
    BalancerStrategy.LEAST_BUSY,
    BalancerStrategy.CAPABILITY,
)


@dataclass
class RuleCondition:
    """Declarative rule condition. Unset fields always match.

    Attributes:
        required_skill_contains: Skill the task must require
        priority_gte: Minimum task priority
        priority_lte: Maximum task priority
        metadata: Task metadata entries that must be equal
    """

    required_skill_contains: str | None = None
    priority_gte: int | None = None
    priority_lte: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def matches(self, task: TaskRequest) -> bool:
        """Check the condition against a task."""
        if (
            self.required_skill_contains
            and self.required_skill_contains not in task.required_skills
        ):
            return False
        if self.priority_gte is not None and task.priority < self.priority_gte:
            return False
        if self.priority_lte is not None and task.priority > self.priority_lte:
            return False
        return all(task.metadata.get(k) == v for k, v in self.metadata.items())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleCondition:
        """Build a condition from its nested dict form.

        Example:
            >>> RuleCondition.from_dict({
            ...     "required_skills": {"contains": "legal"},
            ...     "priority": {"gte": 8},
            ... })
        """
        skills = data.get("required_skills") or {}
        priority = data.get("priority") or {}
        return cls(
            required_skill_contains=skills.get("contains"),
            priority_gte=priority.get("gte"),
            priority_lte=priority.get("lte"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class RoutingRule:
    """A named routing rule.

    Attributes:
        name: Unique rule name
        priority: Evaluation order, higher first; must be non-negative
        condition: Predicate function, RuleCondition or its dict form
        action: Picks an agent from the available agents, or returns None
        enabled: Disabled rules are skipped
    """

    name: str
    priority: int
    condition: RuleCondition | Callable[[TaskRequest], bool] | dict[str, Any]
    action: Callable[[TaskRequest, list[AgentInfo]], AgentInfo | None]
    enabled: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.condition, dict):
            self.condition = RuleCondition.from_dict(self.condition)

    def matches(self, task: TaskRequest) -> bool:
        """Evaluate the rule's condition."""
        if isinstance(self.condition, RuleCondition):
            return self.condition.matches(task)
        return bool(self.condition(task))


def _validate_rule(rule: RoutingRule) -> None:
    if not rule.name or not rule.name.strip():
        raise ValidationError("Rule name is required", field="name")
    if rule.priority < 0:
        raise ValidationError(
            "Rule priority must be non-negative",
            field="priority",
            expected=">= 0",
            actual=rule.priority,
        )


class RoutingRuleEngine(LoadBalancer):
    """Routes tasks with ordered rules and a default fallback strategy.

    Example:
        >>> engine = RoutingRuleEngine(agents, default_strategy="least-busy")
        >>> engine.add_rule(RoutingRule(
        ...     name="legal-to-counsel",
        ...     priority=10,
        ...     condition={"required_skills": {"contains": "legal"}},
        ...     action=lambda task, agents: next(
        ...         (a for a in agents if "counsel" in a.skills), None
        ...     ),
        ... ))
        >>> result = engine.route(task)
    """

    strategy = BalancerStrategy.CUSTOM

    def __init__(
        self,
        agents: Iterable[AgentInfo] | None = None,
        *,
        default_strategy: BalancerStrategy | str = BalancerStrategy.ROUND_ROBIN,
        metrics_collector: RoutingMetricsCollector | None = None,
    ) -> None:
        super().__init__(agents, metrics_collector=metrics_collector)
        default_strategy = BalancerStrategy(default_strategy)
        if default_strategy not in DEFAULT_STRATEGIES:
            raise ValidationError(
                f"Unsupported default strategy: {default_strategy.value}",
                field="default_strategy",
                expected=", ".join(s.value for s in DEFAULT_STRATEGIES),
                actual=default_strategy.value,
            )
        self.default_strategy = default_strategy
        self._rules: list[RoutingRule] = []
        self._default: LoadBalancer | None = None

    def _default_balancer(self) -> LoadBalancer:
        if self._default is None:
            self._default = create_balancer(
                self.default_strategy, self._agents, metrics_collector=self._collector
            )
        return self._default

    def route(self, task: TaskRequest) -> RouteResult:
        """Route with the first matching rule, else the default strategy."""
        start = time.perf_counter()
        rules = sorted(
            (r for r in self._rules if r.enabled), key=lambda r: r.priority, reverse=True
        )
        available = self._available()

        for rule in rules:
            if not rule.matches(task):
                continue
            agent = rule.action(task, available)
            if agent is not None:
                logger.debug("Routing rule matched", rule=rule.name, task_id=task.id)
                return self._finish(task, agent, start, matched_rule=rule.name)

        result = self._default_balancer().route(task)
        return replace(result, matched_rule=None, used_default=True)

    def add_rule(self, rule: RoutingRule) -> None:
        """Add a rule.

        Raises:
            ValidationError: If the name is blank or the priority negative
        """
        _validate_rule(rule)
        self._rules.append(rule)

    def _find(self, name: str) -> RoutingRule | None:
        return next((r for r in self._rules if r.name == name), None)

    def remove_rule(self, name: str) -> None:
        """Remove a rule by name. Unknown names are ignored."""
        self._rules = [r for r in self._rules if r.name != name]

    def update_rule(self, name: str, **updates: Any) -> None:
        """Update fields of a rule. Unknown names are ignored.

        Raises:
            ValidationError: If the updated rule would fail :meth:`add_rule`
                validation; the rule is left unchanged
        """
        rule = self._find(name)
        if rule is None:
            return
        updated = replace(rule, **updates)
        _validate_rule(updated)
        self._rules = [updated if r is rule else r for r in self._rules]

    def enable_rule(self, name: str) -> None:
        """Enable a rule."""
        self.update_rule(name, enabled=True)

    def disable_rule(self, name: str) -> None:
        """Disable a rule."""
        self.update_rule(name, enabled=False)

    def get_rules(self) -> list[RoutingRule]:
        """Get a copy of the rule list."""
        return list(self._rules)

    def add_agent(self, agent: AgentInfo) -> None:
        super().add_agent(agent)
        if self._default is not None:
            self._default.add_agent(agent)

    def remove_agent(self, agent_id: str) -> None:
        super().remove_agent(agent_id)
        if self._default is not None:
            self._default.remove_agent(agent_id)
