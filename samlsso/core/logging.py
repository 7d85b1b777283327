"""Protocol logging for SAML exchanges.

Records every SAML message the SP sends or receives, plus the HTTP
exchanges made while fetching metadata, with configurable detail and
sensitive data protection.

Log levels:
- ERROR: Only log errors
- INFO: Log flow milestones (requests sent, responses received)
- DEBUG: Log message details (IDs, endpoints, bindings, HTTP headers)
- TRACE: Log full message XML and bodies (requires explicit enable)
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from typing import Any

import httpx

# Custom log level for TRACE (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Module logger
logger = logging.getLogger("samlsso.protocol")

BODY_PREVIEW_LIMIT = 2000


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR  # 40
    INFO = logging.INFO  # 20
    DEBUG = logging.DEBUG  # 10
    TRACE = TRACE  # 5


class MessageDirection(StrEnum):
    """Whether a SAML message left or reached this SP."""

    OUTBOUND = "outbound"
    INBOUND = "inbound"


# Patterns for sensitive data redaction
SENSITIVE_PATTERNS = [
    # SAML binding parameters
    (re.compile(r"(SAMLRequest=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"(SAMLResponse=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r"(Signature=)[^&\s]+"), r"\1[REDACTED]"),
    (re.compile(r'(name="SAMLRequest"\s+value=")[^"]+'), r"\1[REDACTED]"),
    (re.compile(r'(name="SAMLResponse"\s+value=")[^"]+'), r"\1[REDACTED]"),
    # XML signature values and embedded certificates
    (re.compile(r"(<(?:ds:)?SignatureValue[^>]*>)[^<]+"), r"\1[REDACTED]"),
    # HTTP headers
    (re.compile(r"(Authorization:\s*(?:Bearer|Basic)\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^((?:Bearer|Basic)\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Set-Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    # JSON fields
    (re.compile(r'"(password)"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"'),
]


def redact_sensitive(text: str) -> str:
    """Redact sensitive information from text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with sensitive data redacted.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _preview(body: str) -> str:
    return f"{body[:BODY_PREVIEW_LIMIT]}{'...' if len(body) > BODY_PREVIEW_LIMIT else ''}"


@dataclass
class SAMLMessageRecord:
    """A SAML protocol message sent or received by the SP."""

    direction: MessageDirection
    message_type: str
    message_id: str | None
    binding: str | None
    endpoint: str | None = None
    issuer: str | None = None
    relay_state: str | None = None
    xml: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization.

        The message XML is only included when ``include_sensitive`` is set.
        """
        return {
            "direction": self.direction.value,
            "message_type": self.message_type,
            "message_id": self.message_id,
            "binding": self.binding,
            "endpoint": self.endpoint,
            "issuer": self.issuer,
            "relay_state": self.relay_state if include_sensitive else None,
            "xml": self.xml if include_sensitive else None,
            "timestamp": self.timestamp.isoformat(),
        }

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the message for logging at the given level."""
        arrow = "->" if self.direction == MessageDirection.OUTBOUND else "<-"
        lines = [f"SAML {self.message_type} {self.message_id or '?'} {arrow} {self.endpoint or '?'}"]

        if level <= LogLevel.DEBUG:
            lines.append(f"  Binding: {self.binding}")
            if self.issuer:
                lines.append(f"  Issuer: {self.issuer}")
            if self.relay_state:
                lines.append(
                    f"  RelayState: {self.relay_state if include_sensitive else '[REDACTED]'}"
                )

        if level <= LogLevel.TRACE and self.xml:
            body = self.xml if include_sensitive else redact_sensitive(self.xml)
            lines.append("  Message:")
            lines.append(f"    {_preview(body)}")

        return "\n".join(lines)


@dataclass
class HTTPExchange:
    """A single HTTP request/response exchange (metadata fetches)."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str]
    response_status: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    redirects: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization, redacting unless asked not to."""

        def process(value: str | None) -> str | None:
            if value is None:
                return None
            return value if include_sensitive else redact_sensitive(value)

        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "url": process(self.url),
            "request_headers": {k: process(v) for k, v in self.request_headers.items()},
            "response_status": self.response_status,
            "response_headers": {k: process(v) for k, v in self.response_headers.items()},
            "response_body": process(self.response_body),
            "duration_ms": self.duration_ms,
            "error": self.error,
            "redirects": [
                {"url": process(r["url"]), "status": r.get("status")} for r in self.redirects
            ],
        }

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the exchange for logging."""
        url = self.url if include_sensitive else redact_sensitive(self.url)
        lines = [f"HTTP {self.method} {url} -> {self.response_status or 'ERROR'}"]

        if self.duration_ms is not None:
            lines.append(f"  Duration: {self.duration_ms:.1f}ms")
        if self.error:
            lines.append(f"  Error: {self.error}")

        if level <= LogLevel.DEBUG:
            lines.append("  Request Headers:")
            for name, value in self.request_headers.items():
                lines.append(f"    {name}: {value if include_sensitive else redact_sensitive(value)}")
            for redirect in self.redirects:
                lines.append(f"  Redirect: {redirect.get('status', '???')} {redirect['url']}")

        if level <= LogLevel.TRACE and self.response_body:
            body = self.response_body if include_sensitive else redact_sensitive(self.response_body)
            lines.append("  Response Body:")
            lines.append(f"    {_preview(body)}")

        return "\n".join(lines)


@dataclass
class ProtocolLog:
    """Collects SAML messages and HTTP exchanges for a flow."""

    flow_id: str
    flow_type: str
    messages: list[SAMLMessageRecord] = field(default_factory=list)
    exchanges: list[HTTPExchange] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    def complete(self) -> None:
        self.completed_at = datetime.now(UTC)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "flow_type": self.flow_type,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "messages": [m.to_dict(include_sensitive) for m in self.messages],
            "exchanges": [e.to_dict(include_sensitive) for e in self.exchanges],
        }


class ProtocolLogger:
    """Configurable protocol logger.

    The current flow is tracked per thread so concurrent exchanges do not
    share a log.
    """

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        trace_enabled: bool = False,
    ) -> None:
        """Initialize the protocol logger.

        Args:
            level: Minimum log level.
            trace_enabled: Whether TRACE level is enabled (for sensitive data).
        """
        self.level = level
        self.trace_enabled = trace_enabled
        self._local = threading.local()

    @property
    def effective_level(self) -> LogLevel:
        """Get effective log level (TRACE only if explicitly enabled)."""
        if self.level == LogLevel.TRACE and not self.trace_enabled:
            return LogLevel.DEBUG
        return self.level

    @property
    def include_sensitive(self) -> bool:
        return self.trace_enabled and self.level <= LogLevel.TRACE

    @property
    def current_log(self) -> ProtocolLog | None:
        return getattr(self._local, "log", None)

    def start_flow(self, flow_id: str, flow_type: str) -> ProtocolLog:
        """Start logging a new flow on the calling thread."""
        log = ProtocolLog(flow_id=flow_id, flow_type=flow_type)
        self._local.log = log
        logger.info(f"Started protocol logging for {flow_type} flow: {flow_id}")
        return log

    def end_flow(self) -> ProtocolLog | None:
        """End the calling thread's flow and return its log."""
        log = self.current_log
        if log is None:
            return None
        log.complete()
        self._local.log = None
        logger.info(
            f"Completed protocol logging for {log.flow_type} flow: {log.flow_id} "
            f"({len(log.messages)} messages, {len(log.exchanges)} exchanges)"
        )
        return log

    def _emit(self, text: str) -> None:
        effective = self.effective_level
        if effective <= LogLevel.DEBUG:
            logger.debug(text)
        elif effective <= LogLevel.INFO:
            logger.info(text)

    def log_message(self, record: SAMLMessageRecord) -> None:
        """Log a SAML message sent or received."""
        if self.current_log is not None:
            self.current_log.messages.append(record)
        self._emit(record.format_log(self.effective_level, self.include_sensitive))

    def log_exchange(self, exchange: HTTPExchange) -> None:
        """Log an HTTP exchange."""
        if self.current_log is not None:
            self.current_log.exchanges.append(exchange)
        self._emit(exchange.format_log(self.effective_level, self.include_sensitive))
        if exchange.error:
            logger.error(f"HTTP error: {exchange.method} {exchange.url}: {exchange.error}")


class LoggingClient(httpx.Client):
    """HTTPX client with protocol logging support."""

    def __init__(
        self,
        protocol_logger: ProtocolLogger | None = None,
        max_redirects: int = 10,
        **kwargs: Any,
    ) -> None:
        """Initialize the logging client.

        Args:
            protocol_logger: ProtocolLogger to use. Uses the global one if not provided.
            max_redirects: Redirects followed per request.
            **kwargs: Additional arguments passed to httpx.Client.
        """
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self._max_redirects = max_redirects
        # Redirects are followed manually so the chain can be recorded
        kwargs["follow_redirects"] = False
        super().__init__(**kwargs)

    @property
    def protocol_logger(self) -> ProtocolLogger:
        return self._protocol_logger

    def request(self, method: str, url: str | httpx.URL, **kwargs: Any) -> httpx.Response:  # type: ignore[override]
        """Make an HTTP request, following and recording redirects."""
        start_time = time.perf_counter()
        redirects: list[dict[str, Any]] = []
        # Client.get() and friends pass send() options through request()
        auth = kwargs.pop("auth", httpx.USE_CLIENT_DEFAULT)
        kwargs.pop("follow_redirects", None)
        request = self.build_request(method, url, **kwargs)

        exchange = HTTPExchange(
            id=f"http_{id(request):08x}",
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
        )

        try:
            response = self.send(request, auth=auth)
            while response.is_redirect and len(redirects) < self._max_redirects:
                location = response.headers.get("location", "")
                redirects.append({"url": location, "status": response.status_code})
                if not location:
                    break
                request = self.build_request("GET", request.url.join(location))
                response = self.send(request, auth=auth)
        except httpx.HTTPError as e:
            exchange.error = str(e)
            exchange.duration_ms = (time.perf_counter() - start_time) * 1000
            self._protocol_logger.log_exchange(exchange)
            raise

        exchange.response_status = response.status_code
        exchange.response_headers = dict(response.headers)
        exchange.response_body = response.text
        exchange.duration_ms = (time.perf_counter() - start_time) * 1000
        exchange.redirects = redirects
        self._protocol_logger.log_exchange(exchange)
        return response


# Global protocol logger instance
_global_logger: ProtocolLogger | None = None


def get_protocol_logger() -> ProtocolLogger:
    """Get the global protocol logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ProtocolLogger()
    return _global_logger


def set_protocol_logger(logger_instance: ProtocolLogger) -> None:
    """Set the global protocol logger instance."""
    global _global_logger
    _global_logger = logger_instance


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure protocol logging.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or string name.
        trace_enabled: Whether to enable TRACE level (includes message XML).
        log_file: Optional file path to write logs to.

    Returns:
        Configured ProtocolLogger.
    """
    if isinstance(level, str):
        level = LogLevel.__members__.get(level.upper(), LogLevel.INFO)

    logger.setLevel(level)
    logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    protocol_logger = ProtocolLogger(level=level, trace_enabled=trace_enabled)
    set_protocol_logger(protocol_logger)

    if trace_enabled:
        logger.warning("TRACE logging enabled - SAML messages and relay states will be logged!")

    return protocol_logger
