#!/usr/bin/env python3
"""
Routing performance benchmarks.

Measures per-decision cost of each load balancing strategy and the
overhead of with_retry around a no-op operation.
"""

import asyncio
import time
from typing import Any

from hitl_dispatch.resilience import BackoffConfig, CircuitBreaker, WithRetryOptions, with_retry
from hitl_dispatch.routing import (
    AgentInfo,
    CapabilityRouter,
    CompositeBalancer,
    LeastBusyBalancer,
    LoadBalancer,
    RoundRobinBalancer,
    RoutingRule,
    RoutingRuleEngine,
    TaskRequest,
)
from hitl_dispatch.telemetry import RoutingMetricsCollector

SKILLS = ["python", "go", "legal", "billing", "support", "sql"]


def make_agents(count: int) -> list[AgentInfo]:
    """Build a roster with rotating skills."""
    return [
        AgentInfo(
            id=f"agent-{i}",
            skills={SKILLS[i % len(SKILLS)], SKILLS[(i + 1) % len(SKILLS)]},
            max_load=1_000_000,
        )
        for i in range(count)
    ]


def _result(name: str, iterations: int, elapsed: float) -> dict[str, Any]:
    return {
        "name": name,
        "iterations": iterations,
        "elapsed_seconds": elapsed,
        "throughput_ops": iterations / elapsed,
        "latency_us": (elapsed / iterations) * 1_000_000,
    }


def benchmark_balancer(
    name: str, balancer: LoadBalancer, iterations: int = 10000
) -> dict[str, Any]:
    """Benchmark routing decisions of one balancer."""
    task = TaskRequest(id="bench", required_skills=["legal"])

    start = time.perf_counter()
    for _ in range(iterations):
        balancer.route(task)
    elapsed = time.perf_counter() - start

    return _result(name, iterations, elapsed)


async def noop_operation() -> str:
    """No-op operation for overhead measurement."""
    return "result"


async def benchmark_with_retry(iterations: int = 10000) -> dict[str, Any]:
    """Benchmark with_retry overhead (no retries triggered)."""
    options = WithRetryOptions(
        backoff=BackoffConfig(base_delay_ms=1), circuit_breaker=CircuitBreaker()
    )

    start = time.perf_counter()
    for _ in range(iterations):
        await with_retry(noop_operation, options)
    elapsed = time.perf_counter() - start

    return _result("with_retry (breaker, no retries)", iterations, elapsed)


def run_balancer_benchmarks(agent_count: int) -> None:
    """Run balancer benchmarks over a roster of the given size."""
    agents = make_agents(agent_count)
    collector = RoutingMetricsCollector()

    engine = RoutingRuleEngine(agents, metrics_collector=collector)
    engine.add_rule(
        RoutingRule(
            name="legal",
            priority=10,
            condition={"required_skills": {"contains": "legal"}},
            action=lambda task, available: next(
                (a for a in available if "legal" in a.skills), None
            ),
        )
    )

    balancers: list[tuple[str, LoadBalancer]] = [
        ("RoundRobin", RoundRobinBalancer(agents, metrics_collector=collector)),
        ("LeastBusy", LeastBusyBalancer(agents, metrics_collector=collector)),
        ("Capability", CapabilityRouter(agents, metrics_collector=collector)),
        ("RuleEngine", engine),
        (
            "Composite",
            CompositeBalancer(
                agents,
                strategies=["capability", "least-busy"],
                fallback_behavior="next-strategy",
                metrics_collector=collector,
            ),
        ),
    ]

    print(f"Roster of {agent_count} agents:")
    for name, balancer in balancers:
        result = benchmark_balancer(name, balancer)
        print(f"  {result['name']}:")
        print(f"    Throughput: {result['throughput_ops']:.0f} ops/sec")
        print(f"    Latency: {result['latency_us']:.2f} µs/op")
    print()


async def run_benchmarks() -> None:
    """Run all benchmarks and print results."""
    print("=" * 60)
    print("Routing Benchmarks")
    print("=" * 60)
    print()

    for agent_count in [10, 100, 1000]:
        run_balancer_benchmarks(agent_count)

    result = await benchmark_with_retry()
    print(f"{result['name']}:")
    print(f"  Throughput: {result['throughput_ops']:.0f} ops/sec")
    print(f"  Latency: {result['latency_us']:.2f} µs/op")


if __name__ == "__main__":
    asyncio.run(run_benchmarks())
