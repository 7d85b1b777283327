"""Tests for protocol logging module."""

from datetime import UTC, datetime

import httpx
import pytest

from samlsso.core.logging import (
    HTTPExchange,
    LoggingClient,
    LogLevel,
    MessageDirection,
    ProtocolLog,
    ProtocolLogger,
    SAMLMessageRecord,
    configure_logging,
    get_protocol_logger,
    redact_sensitive,
    set_protocol_logger,
)


@pytest.fixture(autouse=True)
def restore_global_logger():
    previous = get_protocol_logger()
    yield
    set_protocol_logger(previous)


def _record(**overrides) -> SAMLMessageRecord:
    values = {
        "direction": MessageDirection.OUTBOUND,
        "message_type": "AuthnRequest",
        "message_id": "_abc123",
        "binding": "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect",
        "endpoint": "https://idp.example.com/sso",
        "issuer": "https://sp.example.com/metadata",
        "relay_state": "/dashboard",
        "xml": "<samlp:AuthnRequest ID=\"_abc123\"/>",
    }
    values.update(overrides)
    return SAMLMessageRecord(**values)


class TestRedactSensitive:
    """Tests for sensitive data redaction."""

    def test_redact_saml_request_parameter(self):
        """Test redacting SAMLRequest in a redirect URL."""
        text = "https://idp.example.com/sso?SAMLRequest=fZJNT8MwDIb%2FSpV7&RelayState=abc"
        result = redact_sensitive(text)
        assert "fZJNT8MwDIb" not in result
        assert "SAMLRequest=[REDACTED]" in result
        assert "RelayState=abc" in result

    def test_redact_saml_response_form_field(self):
        """Test redacting SAMLResponse in a POST form."""
        text = '<input type="hidden" name="SAMLResponse" value="PHNhbWxwOlJlc3BvbnNl">'
        result = redact_sensitive(text)
        assert "PHNhbWxwOlJlc3BvbnNl" not in result
        assert "[REDACTED]" in result

    def test_redact_signature_value(self):
        """Test redacting XML signature values."""
        text = "<ds:SignatureValue>abcdefSIGNATURE==</ds:SignatureValue>"
        result = redact_sensitive(text)
        assert "abcdefSIGNATURE" not in result
        assert "<ds:SignatureValue>[REDACTED]" in result

    def test_redact_authorization_header(self):
        """Test redacting Authorization header."""
        text = "Authorization: Bearer my-secret-token"
        result = redact_sensitive(text)
        assert "my-secret-token" not in result
        assert "[REDACTED]" in result

    def test_redact_cookie_header(self):
        """Test redacting Cookie header."""
        text = "Cookie: session=abc123; user=john"
        result = redact_sensitive(text)
        assert "session=abc123" not in result
        assert "[REDACTED]" in result

    def test_no_redact_normal_text(self):
        """Test that normal text is not modified."""
        text = "This is a normal log message without sensitive data."
        assert redact_sensitive(text) == text


class TestSAMLMessageRecord:
    """Tests for SAMLMessageRecord dataclass."""

    def test_to_dict_hides_xml_and_relay_state(self):
        result = _record().to_dict()
        assert result["direction"] == "outbound"
        assert result["message_id"] == "_abc123"
        assert result["xml"] is None
        assert result["relay_state"] is None

    def test_to_dict_with_sensitive(self):
        result = _record().to_dict(include_sensitive=True)
        assert result["xml"].startswith("<samlp:AuthnRequest")
        assert result["relay_state"] == "/dashboard"

    def test_format_log_info_level(self):
        """INFO shows one summary line."""
        log = _record().format_log(LogLevel.INFO)
        assert log == "SAML AuthnRequest _abc123 -> https://idp.example.com/sso"

    def test_format_log_inbound_arrow(self):
        log = _record(direction=MessageDirection.INBOUND, message_type="Response").format_log(LogLevel.INFO)
        assert "SAML Response _abc123 <- " in log

    def test_format_log_debug_level(self):
        """DEBUG adds binding and issuer and masks relay state."""
        log = _record().format_log(LogLevel.DEBUG)
        assert "Binding: urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect" in log
        assert "Issuer: https://sp.example.com/metadata" in log
        assert "RelayState: [REDACTED]" in log
        assert "Message:" not in log

    def test_format_log_trace_level(self):
        log = _record().format_log(LogLevel.TRACE, include_sensitive=True)
        assert "RelayState: /dashboard" in log
        assert '<samlp:AuthnRequest ID="_abc123"/>' in log


class TestHTTPExchange:
    """Tests for HTTPExchange dataclass."""

    def test_to_dict_without_sensitive(self):
        """Test serialization with sensitive data redacted."""
        exchange = HTTPExchange(
            id="test_001",
            timestamp=datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC),
            method="GET",
            url="https://idp.example.com/metadata",
            request_headers={"Authorization": "Basic base64credentials"},
            response_status=200,
            response_body="<EntityDescriptor/>",
            duration_ms=150.5,
        )

        result = exchange.to_dict(include_sensitive=False)

        assert result["id"] == "test_001"
        assert result["method"] == "GET"
        assert "[REDACTED]" in result["request_headers"]["Authorization"]
        assert result["response_body"] == "<EntityDescriptor/>"

    def test_to_dict_with_sensitive(self):
        exchange = HTTPExchange(
            id="test_001",
            timestamp=datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC),
            method="GET",
            url="https://idp.example.com/sso?SAMLRequest=secret",
            request_headers={"Authorization": "Basic base64credentials"},
        )

        result = exchange.to_dict(include_sensitive=True)

        assert "secret" in result["url"]
        assert "base64credentials" in result["request_headers"]["Authorization"]

    def test_format_log_info_level(self):
        """Test log formatting at INFO level."""
        exchange = HTTPExchange(
            id="test_001",
            timestamp=datetime.now(UTC),
            method="GET",
            url="https://idp.example.com/metadata",
            request_headers={},
            response_status=200,
            duration_ms=50.0,
        )

        log = exchange.format_log(LogLevel.INFO)
        assert "GET" in log
        assert "200" in log
        assert "50.0ms" in log
        assert "Request Headers" not in log

    def test_format_log_debug_level(self):
        exchange = HTTPExchange(
            id="test_001",
            timestamp=datetime.now(UTC),
            method="GET",
            url="https://idp.example.com/metadata",
            request_headers={"Authorization": "Bearer token"},
            response_status=200,
            redirects=[{"url": "https://idp.example.com/md.xml", "status": 301}],
        )

        log = exchange.format_log(LogLevel.DEBUG)
        assert "Request Headers" in log
        assert "Redirect: 301 https://idp.example.com/md.xml" in log
        assert "[REDACTED]" in log


class TestProtocolLog:
    """Tests for ProtocolLog dataclass."""

    def test_complete(self):
        log = ProtocolLog(flow_id="test_flow", flow_type="saml_response")
        assert log.completed_at is None

        log.complete()
        assert log.completed_at is not None

    def test_to_dict(self):
        log = ProtocolLog(flow_id="test_flow", flow_type="saml_response")
        log.messages.append(_record())
        log.complete()

        result = log.to_dict()
        assert result["flow_id"] == "test_flow"
        assert result["flow_type"] == "saml_response"
        assert len(result["messages"]) == 1
        assert result["exchanges"] == []
        assert result["completed_at"] is not None


class TestProtocolLogger:
    """Tests for ProtocolLogger class."""

    def test_default_log_level(self):
        assert ProtocolLogger().level == LogLevel.INFO

    def test_trace_requires_explicit_enable(self):
        """Test that TRACE level requires explicit enable."""
        logger = ProtocolLogger(level=LogLevel.TRACE, trace_enabled=False)
        assert logger.effective_level == LogLevel.DEBUG
        assert not logger.include_sensitive

        logger.trace_enabled = True
        assert logger.effective_level == LogLevel.TRACE
        assert logger.include_sensitive

    def test_start_and_end_flow(self):
        logger = ProtocolLogger()

        log = logger.start_flow("_req1", "saml_response")
        assert logger.current_log is log

        result = logger.end_flow()
        assert result is log
        assert result.completed_at is not None
        assert logger.current_log is None

    def test_end_flow_without_start(self):
        assert ProtocolLogger().end_flow() is None

    def test_log_message_records_into_flow(self):
        logger = ProtocolLogger()
        log = logger.start_flow("_req1", "saml_response")

        logger.log_message(_record())
        assert len(log.messages) == 1

    def test_log_message_without_flow(self, caplog):
        logger = ProtocolLogger(level=LogLevel.INFO)
        with caplog.at_level("INFO", logger="samlsso.protocol"):
            logger.log_message(_record())
        assert "SAML AuthnRequest _abc123" in caplog.text

    def test_error_level_emits_nothing(self, caplog):
        logger = ProtocolLogger(level=LogLevel.ERROR)
        with caplog.at_level("DEBUG", logger="samlsso.protocol"):
            logger.log_message(_record())
        assert caplog.records == []


class TestLoggingClient:
    """Tests for the httpx client wrapper."""

    def test_records_exchange(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<EntityDescriptor/>"))
        protocol_logger = ProtocolLogger()
        log = protocol_logger.start_flow("metadata", "metadata_fetch")

        with LoggingClient(protocol_logger=protocol_logger, transport=transport) as client:
            response = client.get("https://idp.example.com/metadata")

        assert response.status_code == 200
        assert len(log.exchanges) == 1
        assert log.exchanges[0].response_status == 200
        assert log.exchanges[0].response_body == "<EntityDescriptor/>"

    def test_follows_redirects(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old":
                return httpx.Response(302, headers={"location": "/new"})
            return httpx.Response(200, text="ok")

        protocol_logger = ProtocolLogger()
        log = protocol_logger.start_flow("metadata", "metadata_fetch")

        with LoggingClient(protocol_logger=protocol_logger, transport=httpx.MockTransport(handler)) as client:
            response = client.get("https://idp.example.com/old")

        assert response.text == "ok"
        assert log.exchanges[0].redirects == [{"url": "/new", "status": 302}]

    def test_records_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        protocol_logger = ProtocolLogger()
        log = protocol_logger.start_flow("metadata", "metadata_fetch")

        with LoggingClient(protocol_logger=protocol_logger, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.ConnectError):
                client.get("https://idp.example.com/metadata")

        assert log.exchanges[0].error == "connection refused"


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_configure_with_defaults(self):
        logger = configure_logging()
        assert logger.level == LogLevel.INFO
        assert not logger.trace_enabled
        assert get_protocol_logger() is logger

    def test_configure_with_string_level(self):
        assert configure_logging(level="DEBUG").level == LogLevel.DEBUG

    def test_configure_unknown_level_falls_back_to_info(self):
        assert configure_logging(level="VERBOSE").level == LogLevel.INFO

    def test_configure_trace(self):
        logger = configure_logging(level=LogLevel.TRACE, trace_enabled=True)
        assert logger.trace_enabled
        assert logger.include_sensitive


class TestGlobalLogger:
    """Tests for global logger management."""

    def test_get_protocol_logger(self):
        assert get_protocol_logger() is get_protocol_logger()

    def test_set_protocol_logger(self):
        custom_logger = ProtocolLogger(level=LogLevel.DEBUG)
        set_protocol_logger(custom_logger)
        assert get_protocol_logger() is custom_logger
