# CREATE FILE: utils/logging.py

import json
import os
import re
import time
import uuid
import traceback
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Any


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def _level_for_status(status_code: int) -> str:
    if status_code is None or status_code < 400:
        return 'info'
    return 'warning' if status_code < 500 else 'error'


def _speed_label(duration_ms: float) -> str:
    """Coarse latency bucket used for dashboards"""
    for limit, label in ((100, 'fast'), (500, 'normal'), (2000, 'slow')):
        if duration_ms < limit:
            return label
    return 'very_slow'


class StructuredLogger:
    """
    JSON-lines logger for the pricing and driver stats services.

    Each call prints one object to stdout. Service tags are attached to every
    line; keyword arguments become top-level fields, and None values are
    dropped. Debug lines are only emitted when DEBUG_LOGGING=true.
    """

    def __init__(self, service_name: str, environment: str = None):
        self.service_name = service_name
        self.enable_debug = os.getenv('DEBUG_LOGGING', 'false').lower() == 'true'
        self.tags = {
            'service': service_name,
            'environment': environment or os.getenv('ENVIRONMENT', 'development'),
            'version': os.getenv('SERVICE_VERSION', '1.0.0'),
            'hostname': os.getenv('HOSTNAME', 'unknown'),
            'pid': os.getpid(),
        }

    def _emit(self, level: str, message: str, **fields):
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': level.upper(),
            'message': message,
        }
        entry.update(self.tags)
        entry.update({key: value for key, value in fields.items() if value is not None})
        print(json.dumps(entry, default=str))

    def _error_fields(self, error: Exception, with_trace: bool = False) -> Dict[str, Any]:
        if error is None:
            return {}
        fields = {'error_type': type(error).__name__, 'error_message': str(error)}
        if with_trace and self.enable_debug:
            fields['stack_trace'] = traceback.format_exc()
        return fields

    def debug(self, message: str, **fields):
        if self.enable_debug:
            self._emit('debug', message, **fields)

    def info(self, message: str, **fields):
        self._emit('info', message, **fields)

    def warning(self, message: str, error: Exception = None, **fields):
        """Absorbed failures: the caller carries on with a fallback"""
        self._emit('warning', message, **{**self._error_fields(error), **fields})

    def error(self, message: str, error: Exception = None, **fields):
        self._emit('error', message, **{**self._error_fields(error, with_trace=True), **fields})

    def request_start(self, request_id: str, endpoint: str, method: str = 'GET', **fields):
        self.info(f"{method} {endpoint} started", event='request_start',
                  request_id=request_id, endpoint=endpoint, method=method, **fields)

    def request_end(self, request_id: str, endpoint: str, duration_ms: float,
                    status_code: int = 200, **fields):
        self._emit(_level_for_status(status_code), f"{endpoint} -> {status_code}",
                   event='request_end', request_id=request_id, endpoint=endpoint,
                   status_code=status_code, duration_ms=round(duration_ms, 2),
                   speed=_speed_label(duration_ms), **fields)

    def api_call(self, target_service: str, endpoint: str, method: str = 'GET',
                 duration_ms: float = None, status_code: int = None, **fields):
        """Outbound HTTP call to a third party such as the Distance Matrix API"""
        self._emit(_level_for_status(status_code), f"{target_service} {method} {endpoint}",
                   event='api_call', target_service=target_service, endpoint=endpoint,
                   method=method, status_code=status_code,
                   duration_ms=round(duration_ms, 2) if duration_ms is not None else None,
                   **fields)

    def data_operation(self, operation: str, record_count: int = None,
                       duration_ms: float = None, **fields):
        """One read-only SQL aggregate; debug level since every stats request runs several"""
        self.debug(f"query {operation}", event='data_operation', operation=operation,
                   record_count=record_count,
                   duration_ms=round(duration_ms, 2) if duration_ms is not None else None,
                   **fields)

    @contextmanager
    def request_context(self, request_id: str = None, endpoint: str = None, method: str = 'GET'):
        """
        Time an HTTP handler and log its start and end.

        The status code of a raised exception (HTTPException carries one) is
        reported on the end line; anything without one counts as a 500.
        """
        request_id = request_id or str(uuid.uuid4())
        start = time.perf_counter()
        status_code = 200

        if endpoint:
            self.request_start(request_id, endpoint, method)
        try:
            yield request_id
        except Exception as e:
            status_code = getattr(e, 'status_code', 500)
            if status_code >= 500:
                self.error(f"{endpoint} failed", error=e, request_id=request_id)
            raise
        finally:
            if endpoint:
                self.request_end(request_id, endpoint, _elapsed_ms(start), status_code=status_code)

    @contextmanager
    def operation_context(self, operation_name: str, **context):
        start = time.perf_counter()
        self.debug(f"{operation_name} started", event='operation_start',
                   operation=operation_name, **context)
        try:
            yield
        except Exception as e:
            self.error(f"{operation_name} failed", error=e, event='operation_error',
                       operation=operation_name, duration_ms=_elapsed_ms(start), **context)
            raise
        self.debug(f"{operation_name} finished", event='operation_end',
                   operation=operation_name, duration_ms=_elapsed_ms(start), **context)


def get_logger(service_name: str) -> StructuredLogger:
    return StructuredLogger(service_name)


# Delivery addresses are customer PII; only the city/state tail is logged
_STREET_RE = re.compile(r'^\s*\d+[A-Za-z]?\s+[^,]+')


def redact_street(address: str) -> str:
    """
    Drop the street line of an address, keeping the city/state tail.

    "123 Main St, San Francisco, CA" -> "[REDACTED], San Francisco, CA"
    """
    if not address:
        return address
    return _STREET_RE.sub('[REDACTED]', address, count=1)
