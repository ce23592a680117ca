import structlog
import logging
import sys
from typing import Dict, Any, Optional
from dataclasses import dataclass
from datetime import datetime, timezone
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "agenter"
) -> None:
    """Setup structured logging configuration"""

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    # Processors for structlog
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    # Add appropriate renderer based on format
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add recall and connection context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    context = structlog.contextvars.get_contextvars()

    recall_id = context.get("recall_id")
    if recall_id:
        event_dict["recall_id"] = recall_id

    connection_id = context.get("connection_id")
    if connection_id:
        event_dict["connection_id"] = connection_id

    return event_dict


class RecallLogger:
    """Specialized logger for memory and recall operations"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_recall_event(
        self,
        event_type: str,
        trigger: str,
        data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        """Log recall lifecycle events (start, complete, interrupt)"""

        self.logger.info(
            "recall_event",
            event_type=event_type,
            trigger=trigger[:80],
            data=data or {},
            **kwargs
        )

    def log_tool_invocation(
        self,
        tool_name: str,
        model: str,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        """Log one cognition tool call"""

        self.logger.info(
            "tool_invocation",
            tool_name=tool_name,
            model=model,
            duration_ms=duration_ms,
            success=success,
            error=error
        )

    def log_round_transition(
        self,
        round_number: int,
        from_stage: str,
        to_stage: str,
        state_summary: Optional[Dict[str, Any]] = None
    ):
        """Log recall state machine transitions"""

        self.logger.debug(
            "round_transition",
            round=round_number,
            from_stage=from_stage,
            to_stage=to_stage,
            state_summary=state_summary or {}
        )

    def log_fact_event(
        self,
        action: str,
        fact_id: Optional[str] = None,
        fact_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log fact log changes"""

        self.logger.info(
            "fact_event",
            action=action,
            fact_id=fact_id,
            fact_type=fact_type,
            details=details or {}
        )


# Global logger instance
recall_logger = RecallLogger("agenter.recall")


@dataclass
class LatencyStats:
    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    def add(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0


class MetricsCollector:
    """In-process counters and latencies, each one also logged"""

    def __init__(self):
        self.metrics: Dict[str, int] = {}
        self.latencies: Dict[str, LatencyStats] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.latencies.setdefault(operation, LatencyStats()).add(duration_ms)

        recall_logger.logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=round(duration_ms, 2),
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.metrics[name] = self.metrics.get(name, 0) + value

        recall_logger.logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )


# Global metrics collector
metrics = MetricsCollector()
