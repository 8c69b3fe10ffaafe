from typing import Dict, Any, Optional, TYPE_CHECKING
from datetime import datetime, timezone
import logging
import sys
import structlog

if TYPE_CHECKING:
    from graphagent.infrastructure.config import AgentGraphSettings

CONTEXT_KEYS = ("service", "environment", "run_id", "strategy", "session_id")


def setup_logging(
    settings: Optional["AgentGraphSettings"] = None,
    log_level: Optional[str] = None,
    log_format: Optional[str] = None
) -> None:
    """Configure stdlib logging and structlog from the engine settings

    ``log_level`` and ``log_format`` override the values in ``settings``.
    """
    if settings is None:
        from graphagent.infrastructure.config import AgentGraphSettings
        settings = AgentGraphSettings.from_env()

    level_name = (log_level or settings.log_level).upper()
    log_format = log_format or settings.log_format

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO)
    )

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
        service=settings.service_name,
        environment=settings.environment,
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy the service and run context into every entry"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    context = structlog.contextvars.get_contextvars()
    for key in CONTEXT_KEYS:
        if key in context and key not in event_dict:
            event_dict[key] = context[key]

    return event_dict


class AgentLogger:
    """Specialized logger for agent operations"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_node_event(
        self,
        event_type: str,
        node_name: str,
        data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        """Log node lifecycle events"""

        self.logger.info(
            "node_event",
            event_type=event_type,
            node_name=node_name,
            data=data or {},
            **kwargs
        )

    def log_tool_execution(
        self,
        tool_name: str,
        input_data: Dict[str, Any],
        output_data: Optional[str] = None,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        """Log tool execution events"""

        self.logger.info(
            "tool_execution",
            tool_name=tool_name,
            input_data=input_data,
            output_data=output_data,
            duration_ms=duration_ms,
            success=success,
            error=error
        )

    def log_workflow_transition(
        self,
        from_node: str,
        to_node: str,
        edge_index: Optional[int] = None,
        graph: Optional[str] = None
    ):
        """Log edge selections"""

        self.logger.debug(
            "workflow_transition",
            from_node=from_node,
            to_node=to_node,
            edge_index=edge_index,
            graph=graph
        )

    def log_context_update(
        self,
        context_type: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log session updates"""

        self.logger.info(
            "context_update",
            context_type=context_type,
            action=action,
            details=details or {}
        )
