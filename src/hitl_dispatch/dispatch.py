"""
Notification dispatch.

Routes a task to an agent, picks the agent's primary contact channel and
delivers a notification through a :class:`TransportSender` under
:func:`with_retry`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from hitl_dispatch.errors import DispatchError, RetryError
from hitl_dispatch.resilience.executor import WithRetryOptions, with_retry
from hitl_dispatch.routing.strategy import LeastBusyBalancer
from hitl_dispatch.telemetry.logger import bind_log_context, get_logger
from hitl_dispatch.transport.contacts import primary_address

if TYPE_CHECKING:
    from hitl_dispatch.routing.strategy import LoadBalancer
    from hitl_dispatch.routing.types import AgentInfo, RouteResult, TaskRequest
    from hitl_dispatch.transport.contacts import ContactChannel, ResolvedAddress
    from hitl_dispatch.transport.sender import TransportSender

logger = get_logger(__name__)


@dataclass
class DispatchResult:
    """Outcome of dispatching one task.

    Attributes:
        route: The routing decision
        delivered: Whether the notification was sent
        address: Address the notification went to
        attempts: Send attempts made
        error: Failure description when not delivered
        exception: Typed error behind the failure, if any
    """

    route: RouteResult
    delivered: bool
    address: ResolvedAddress | None = None
    attempts: int = 0
    error: str | None = None
    exception: DispatchError | None = None


class NotificationDispatcher:
    """Routes tasks and notifies the chosen agent.

    Example:
        >>> dispatcher = NotificationDispatcher(
        ...     LeastBusyBalancer(agents),
        ...     slack_sender,
        ...     retry=WithRetryOptions(max_retries=2, backoff=BackoffConfig(1_000)),
        ... )
        >>> result = await dispatcher.dispatch(task, {"text": "Please review"})
    """

    def __init__(
        self,
        balancer: LoadBalancer,
        sender: TransportSender,
        *,
        retry: WithRetryOptions[Any] | None = None,
        preferred_channel: ContactChannel | str | None = None,
    ) -> None:
        """Initialize dispatcher.

        Args:
            balancer: Balancer that picks the agent
            sender: Channel sender
            retry: Retry options for sending
            preferred_channel: Channel to use instead of the default order
        """
        self.balancer = balancer
        self.sender = sender
        self.retry = retry or WithRetryOptions()
        self.preferred_channel = preferred_channel

    async def dispatch(self, task: TaskRequest, payload: dict[str, Any]) -> DispatchResult:
        """Route a task and deliver its notification.

        Routing and delivery failures are reported in the result.

        Args:
            task: Task to route
            payload: Notification payload

        Returns:
            Dispatch outcome
        """
        with bind_log_context(task_id=task.id):
            return await self._dispatch(task, payload)

    async def _dispatch(self, task: TaskRequest, payload: dict[str, Any]) -> DispatchResult:
        route = self.balancer.route(task)
        agent = route.agent
        if agent is None:
            return DispatchResult(route=route, delivered=False, error=route.reason)

        address = primary_address(agent.contacts, self.preferred_channel)
        if address is None:
            self._release(agent.id)
            return DispatchResult(
                route=route, delivered=False, error=f"No contact channel for agent {agent.id}"
            )

        with bind_log_context(agent_id=agent.id):
            return await self._deliver(task, route, agent, address, payload)

    async def _deliver(
        self,
        task: TaskRequest,
        route: RouteResult,
        agent: AgentInfo,
        address: ResolvedAddress,
        payload: dict[str, Any],
    ) -> DispatchResult:
        retries = 0

        def count_retry(attempt: int, error: BaseException, delay_ms: float) -> None:
            nonlocal retries
            retries += 1

        options = replace(self.retry, request_id=self.retry.request_id or task.id)
        try:
            await with_retry(
                lambda: self.sender.send(address.channel, payload, agent.contacts),
                options,
                on_retry=count_retry,
            )
        except DispatchError as e:
            self._release(agent.id)
            logger.warning(
                "Notification not delivered", channel=address.channel.value, error=str(e)
            )
            attempts = e.attempts if isinstance(e, RetryError) else retries
            return DispatchResult(
                route=route,
                delivered=False,
                address=address,
                attempts=attempts,
                error=str(e),
                exception=e,
            )

        logger.info("Notification delivered", channel=address.channel.value)
        return DispatchResult(
            route=route, delivered=True, address=address, attempts=retries + 1
        )

    def _release(self, agent_id: str) -> None:
        if isinstance(self.balancer, LeastBusyBalancer):
            self.balancer.release_load(agent_id)
