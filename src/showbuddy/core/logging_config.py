"""
Structured logging configuration with trace IDs
"""
import logging
import uuid
import contextvars
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from showbuddy.core.database import utcnow

# Context variable to store trace ID across async calls
trace_id_var = contextvars.ContextVar('trace_id', default=None)

# Extra fields copied onto the JSON record when a log call passes them
CONTEXT_FIELDS = ('user_id', 'showing_id', 'hold_token', 'booking_id', 'duration_ms')


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, trace ID and booking context"""

    def __init__(self, *args, service: str = 'showbuddy', **kwargs):
        super().__init__(*args, **kwargs)
        self.service = service

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = utcnow().isoformat()
        log_record['level'] = record.levelname

        trace_id = trace_id_var.get()
        if trace_id:
            log_record['trace_id'] = trace_id

        log_record['service'] = self.service

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_record[field] = getattr(record, field)


def setup_logging(level: str = 'INFO', json_output: bool = True, log_file: Optional[str] = None):
    """Configure root logging, JSON by default"""
    if json_output:
        formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s')
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    # Reduce noise from libraries
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    return root_logger


def set_trace_id(trace_id: str):
    trace_id_var.set(trace_id)


def generate_trace_id() -> str:
    return str(uuid.uuid4())
