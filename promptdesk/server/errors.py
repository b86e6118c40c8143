"""Error kinds, error tracking and the JSON error middleware.

Every failure a handler can report is a PromptDeskError subclass carrying its
HTTP status and a machine readable code. The middleware turns them into

    {"error": {"code": "...", "message": "..."}}

so nothing raised inside a handler takes the process down.
"""

import json
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from aiohttp import web
from loguru import logger
from pydantic import ValidationError


class PromptDeskError(Exception):
    """Base class for errors surfaced to HTTP callers."""

    status = 500
    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class NotFound(PromptDeskError):
    status = 404
    code = "not_found"


class InvalidInput(PromptDeskError):
    status = 400
    code = "invalid_request"


class Forbidden(PromptDeskError):
    status = 403
    code = "forbidden"


class Unavailable(PromptDeskError):
    status = 503
    code = "unavailable"


class UpstreamFailure(PromptDeskError):
    status = 500
    code = "upstream_error"


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


@dataclass
class ErrorEvent:
    """Represents an error event."""
    timestamp: datetime
    service: str
    error_type: str
    message: str
    severity: ErrorSeverity
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'service': self.service,
            'error_type': self.error_type,
            'message': self.message,
            'severity': self.severity.name.lower(),
            'context': self.context
        }


def classify_severity(error: Exception) -> ErrorSeverity:
    """Classify error severity."""
    if isinstance(error, (MemoryError, SystemError)):
        return ErrorSeverity.CRITICAL
    elif isinstance(error, (UpstreamFailure, ConnectionError, TimeoutError)):
        return ErrorSeverity.HIGH
    elif isinstance(error, (Unavailable, OSError)):
        return ErrorSeverity.MEDIUM
    else:
        return ErrorSeverity.LOW


class ErrorTracker:
    """Keeps a window of recent errors for the status endpoint."""

    def __init__(self, window_size: int = 50):
        self.errors: deque = deque(maxlen=window_size)
        self.error_counts: Dict[str, int] = {}

    def record(
        self,
        service: str,
        error: Exception,
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorEvent:
        """Record an error event."""
        event = ErrorEvent(
            timestamp=datetime.now(),
            service=service,
            error_type=type(error).__name__,
            message=str(error),
            severity=classify_severity(error),
            context=context or {}
        )
        self.errors.append(event)

        key = f"{service}:{event.error_type}"
        self.error_counts[key] = self.error_counts.get(key, 0) + 1
        return event

    def recent(self, limit: int = 10) -> List[Dict]:
        return [event.to_dict() for event in list(self.errors)[-limit:]]

    def summary(self) -> Dict[str, Any]:
        """Get error summary."""
        top_errors = sorted(
            self.error_counts.items(),
            key=lambda x: x[1],
            reverse=True
        )[:5]

        return {
            'total_errors': sum(self.error_counts.values()),
            'top_errors': [{'error': k, 'count': v} for k, v in top_errors],
            'recent': self.recent(),
        }


def error_response(status: int, code: str, message: str) -> web.Response:
    return web.json_response(
        {'error': {'code': code, 'message': message}},
        status=status
    )


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else item.get("msg", ""))
    return "; ".join(parts)


def create_error_middleware(tracker: ErrorTracker):
    """Build the middleware that converts handler errors to JSON bodies."""

    @web.middleware
    async def error_middleware(request: web.Request, handler):
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except PromptDeskError as e:
            if e.status >= 500:
                logger.error(f"{request.method} {request.path} failed: {e.message}")
                tracker.record("api", e, {"path": request.path})
            else:
                logger.debug(f"{request.method} {request.path} -> {e.status}: {e.message}")
            return web.json_response(e.to_dict(), status=e.status)
        except ValidationError as e:
            return error_response(400, InvalidInput.code, _describe_validation_error(e))
        except json.JSONDecodeError:
            return error_response(400, InvalidInput.code, "request body must be valid JSON")
        except Exception as e:
            logger.exception(f"Unhandled error on {request.method} {request.path}")
            tracker.record("api", e, {"path": request.path})
            return error_response(500, "internal_error", str(e))

    return error_middleware
