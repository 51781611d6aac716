"""
Logging configuration with request_id correlation.
Structured logging for Cloud Logging compatibility.

PII Protection:
- Never log raw recipient tokens or email addresses
- Use fingerprints (sha256[:8]) for correlation
- Emails go through mask_email(), tokens through fingerprint()
"""
import hashlib
import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


def fingerprint(value: Optional[str], prefix: str = "") -> str:
    """
    Create a safe fingerprint for logging PII values.

    Args:
        value: The sensitive value to fingerprint (token, email, etc.)
        prefix: Optional prefix for the fingerprint (e.g., "tok_", "email_")

    Returns:
        8-char hex fingerprint with optional prefix, or "none" if value is None/empty

    Example:
        fingerprint("s_0123456789abcdef_1700000000000", "tok_") -> "tok_a1b2c3d4"
    """
    if not value:
        return f"{prefix}none" if prefix else "none"
    fp = hashlib.sha256(value.encode()).hexdigest()[:8]
    return f"{prefix}{fp}" if prefix else fp


def mask_email(email: Optional[str]) -> str:
    """Mask email for safe logging: john@example.com -> j***@e***.com"""
    if not email or "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    domain_parts = domain.split(".")
    masked_local = local[0] + "***" if local else "***"
    masked_domain = domain_parts[0][0] + "***" if domain_parts[0] else "***"
    return f"{masked_local}@{masked_domain}.{domain_parts[-1] if len(domain_parts) > 1 else 'com'}"


# Context variables for request correlation
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
task_id_var: ContextVar[Optional[str]] = ContextVar("task_id", default=None)
recipient_id_var: ContextVar[Optional[str]] = ContextVar("recipient_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
token_fp_var: ContextVar[Optional[str]] = ContextVar("token_fp", default=None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def set_context(
    task_id: Optional[str] = None,
    recipient_id: Optional[str] = None,
    user_id: Optional[str] = None,
    token_fp: Optional[str] = None,
) -> None:
    """
    Set logging context variables.

    Args:
        task_id: Signing task UUID (safe to log)
        recipient_id: Recipient UUID (safe to log)
        user_id: Owner user id (safe to log)
        token_fp: Token fingerprint (already hashed, safe to log)
    """
    if task_id:
        task_id_var.set(task_id)
    if recipient_id:
        recipient_id_var.set(recipient_id)
    if user_id:
        user_id_var.set(user_id)
    if token_fp:
        token_fp_var.set(token_fp)


def clear_context() -> None:
    """Clear all context variables."""
    request_id_var.set(None)
    task_id_var.set(None)
    recipient_id_var.set(None)
    user_id_var.set(None)
    token_fp_var.set(None)


class CloudLoggingFormatter(logging.Formatter):
    """
    Formatter for Google Cloud Logging structured logs.
    Outputs JSON format compatible with Cloud Logging.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "logging.googleapis.com/sourceLocation": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        request_id = request_id_var.get()
        if request_id:
            log_entry["logging.googleapis.com/trace"] = request_id
            log_entry["request_id"] = request_id

        for key, var in (
            ("task_id", task_id_var),
            ("recipient_id", recipient_id_var),
            ("user_id", user_id_var),
            ("token_fp", token_fp_var),
        ):
            value = var.get()
            if value:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_entry["data"] = record.extra_data

        return json.dumps(log_entry, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable formatter for local development."""

    def format(self, record: logging.LogRecord) -> str:
        request_id = request_id_var.get() or "-"
        task_id = task_id_var.get()
        recipient_id = recipient_id_var.get()
        token_fp = token_fp_var.get()

        prefix = f"[{record.levelname}] [{request_id[:8]}]"
        if task_id:
            prefix += f" [task:{task_id[:8]}]"
        if recipient_id:
            prefix += f" [rcpt:{recipient_id[:8]}]"
        if token_fp:
            prefix += f" [tok:{token_fp}]"

        message = f"{prefix} {record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logging(environment: str = "development", level: int = logging.INFO) -> None:
    """
    Configure logging based on environment.
    - production: JSON structured logs for Cloud Logging
    - development: Human-readable format
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if environment == "production":
        handler.setFormatter(CloudLoggingFormatter())
    else:
        handler.setFormatter(DevelopmentFormatter())

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware that assigns a unique request_id to each request.
    Also extracts task_id from path if present.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_id(request_id)

        path_parts = request.url.path.split("/")
        for i, part in enumerate(path_parts):
            if part == "tasks" and i + 1 < len(path_parts) and path_parts[i + 1]:
                task_id_var.set(path_parts[i + 1])
                break
            # Public signing paths carry a token, never log it raw
            if part == "sign" and i + 1 < len(path_parts) and path_parts[i + 1]:
                token_fp_var.set(fingerprint(path_parts[i + 1]))
                break

        request.state.request_id = request_id

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)
