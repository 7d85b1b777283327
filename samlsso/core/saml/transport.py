"""Plain HTTP request/response adapters.

Decoders read from a :class:`SimpleRequestAdapter` and encoders write to a
:class:`SimpleResponseAdapter`, which keeps the SAML bindings independent
of any web framework. The Flask blueprint converts to and from these.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class SimpleRequestAdapter:
    """An inbound HTTP request."""

    method: str
    url: str
    query: dict[str, str] = field(default_factory=dict)
    form: dict[str, str] = field(default_factory=dict)

    def parameter(self, name: str) -> str | None:
        """Look up a parameter in the form body, then the query string."""
        if name in self.form:
            return self.form[name]
        return self.query.get(name)


@dataclass
class SimpleResponseAdapter:
    """An outbound HTTP response sink."""

    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    committed: bool = False

    @property
    def location(self) -> str | None:
        return self.headers.get("Location")

    def send_redirect(self, url: str) -> None:
        self._commit()
        self.status_code = 302
        self.headers["Location"] = url
        self.headers.setdefault("Cache-Control", "no-cache, no-store")
        self.headers.setdefault("Pragma", "no-cache")

    def write_html(self, html: str) -> None:
        self._commit()
        self.status_code = 200
        self.headers["Content-Type"] = "text/html; charset=utf-8"
        self.headers.setdefault("Cache-Control", "no-cache, no-store")
        self.headers.setdefault("Pragma", "no-cache")
        self.body = html

    def _commit(self) -> None:
        if self.committed:
            raise RuntimeError("Response has already been written")
        self.committed = True
