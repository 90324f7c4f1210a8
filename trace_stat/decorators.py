"""Decorators for Trace Stat pipeline steps with OpenTelemetry instrumentation."""

import functools
import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

from opentelemetry.trace import Status, StatusCode

from .telemetry import get_meter, get_tracer

logger = logging.getLogger(__name__)

tracer = get_tracer("trace_stat.tools")
meter = get_meter("trace_stat.tools")

step_execution_duration = meter.create_histogram(
    name="trace_stat.step.execution_duration",
    description="Duration of pipeline step executions",
    unit="ms",
)
step_execution_count = meter.create_counter(
    name="trace_stat.step.execution_count",
    description="Total number of pipeline step executions",
    unit="1",
)

F = TypeVar("F", bound=Callable[..., Any])


def instrumented_step(description: str) -> Callable[[F], F]:
    """Wraps a pipeline step with a span, metrics and start/finish logging.

    Example:
        @instrumented_step("Building frames tree")
        def build(...):
            ...
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            step_name = func.__qualname__
            start_time = time.perf_counter()
            success = True

            with tracer.start_as_current_span(step_name) as span:
                span.set_attribute("code.function", step_name)
                span.set_attribute("trace_stat.step", description)
                logger.info(f"{description}...")

                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    success = False
                    logger.error(f"{description} failed: {e}")
                    span.record_exception(e)
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    raise
                finally:
                    duration_ms = (time.perf_counter() - start_time) * 1000
                    if success:
                        logger.info(f"{description} finished in {duration_ms:.2f}ms")
                    attributes = {"trace_stat.step": step_name, "success": str(success)}
                    step_execution_duration.record(duration_ms, attributes)
                    step_execution_count.add(1, attributes)

        return wrapper  # type: ignore[return-value]

    return decorator
