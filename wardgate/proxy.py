"""Policy-checked reverse proxy that injects upstream credentials."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Protocol
from urllib.parse import urlsplit, urlunsplit

import httpx
from werkzeug.wrappers import Request, Response

from wardgate.filter import Filter, match_description
from wardgate.policy import Action, Engine, Rule

DEFAULT_TIMEOUT = 30.0

_HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)
_REQUEST_DROP = _HOP_BY_HOP | {"host", "content-length"}
_RESPONSE_DROP = _HOP_BY_HOP | {"content-length", "content-encoding"}


class CredentialNotFoundError(LookupError):
    """The vault holds no credential under the requested name."""


class Vault(Protocol):
    def get(self, name: str) -> str:
        """Return the credential, or raise CredentialNotFoundError."""


class ApprovalManager(Protocol):
    def request_approval(self, endpoint: str, method: str, path: str, agent_id: str) -> bool:
        """Block until a decision; return it, or raise on failure or timeout."""


@dataclass
class AuthConfig:
    type: str = ""
    credential_env: str = ""


@dataclass
class Endpoint:
    upstream: str = ""
    auth: AuthConfig = field(default_factory=AuthConfig)
    rules: list[Rule] = field(default_factory=list)


def is_text_content(content_type: str) -> bool:
    """True for text, JSON, XML and JavaScript content types."""
    ct = content_type.lower()
    return any(
        kind in ct
        for kind in ("text/", "application/json", "application/xml", "application/javascript")
    )


def _error(message: str, status: int) -> Response:
    response = Response(message + "\n", status=status, content_type="text/plain; charset=utf-8")
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


class Proxy:
    """WSGI application forwarding allowed requests to one upstream."""

    def __init__(
        self,
        endpoint: Endpoint,
        vault: Vault,
        engine: Engine,
        name: str = "",
        approvals: ApprovalManager | None = None,
        filter: Filter | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.vault = vault
        self.engine = engine
        self.name = name
        self.approvals = approvals
        self.filter = filter
        self.timeout = timeout
        self._client = client or httpx.Client()
        self._upstream = urlsplit(endpoint.upstream)

    def __call__(self, environ, start_response) -> Iterable[bytes]:
        request = Request(environ)
        return self._handle(request)(environ, start_response)

    def _handle(self, request: Request) -> Response:
        agent_id = request.headers.get("X-Agent-ID") or request.remote_addr or ""

        decision = self.engine.evaluate_with_key(request.method, request.path, agent_id)
        if decision.action is Action.DENY:
            return _error(decision.message, 403)
        if decision.action is Action.RATE_LIMITED:
            response = _error(decision.message, 429)
            response.headers["Retry-After"] = "60"
            return response
        if decision.action is Action.ASK:
            if self.approvals is None:
                return _error("ask action requires approval manager configuration", 503)
            try:
                approved = self.approvals.request_approval(
                    self.name, request.method, request.path, agent_id
                )
            except Exception as exc:  # any approval failure, timeouts included, refuses
                return _error(f"approval failed: {exc}", 403)
            if not approved:
                return _error("request denied by approver", 403)

        try:
            credential = self.vault.get(self.endpoint.auth.credential_env)
        except LookupError:
            return _error("credential error", 500)

        return self._forward(request, credential)

    def _forward(self, request: Request, credential: str) -> Response:
        upstream = self._upstream
        url = urlunsplit(
            (
                upstream.scheme,
                upstream.netloc,
                upstream.path + request.path,
                request.query_string.decode("latin-1"),
                "",
            )
        )
        headers = httpx.Headers(
            [(k, v) for k, v in request.headers.items() if k.lower() not in _REQUEST_DROP]
        )
        if self.endpoint.auth.type == "bearer":
            headers["Authorization"] = "Bearer " + credential
        if request.remote_addr:
            prior = headers.get("X-Forwarded-For")
            headers["X-Forwarded-For"] = (
                f"{prior}, {request.remote_addr}" if prior else request.remote_addr
            )

        try:
            reply = self._client.request(
                request.method,
                url,
                headers=headers,
                content=request.get_data(),
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            return _error("upstream timeout", 504)
        except httpx.HTTPError as exc:
            return _error(f"upstream error: {exc}", 502)

        return self._filtered_response(reply)

    def _filtered_response(self, reply: httpx.Response) -> Response:
        body = reply.content
        status = reply.status_code
        headers = [
            (k, v) for k, v in reply.headers.multi_items() if k.lower() not in _RESPONSE_DROP
        ]

        active = self.filter is not None and self.filter.enabled
        if active and is_text_content(reply.headers.get("Content-Type", "")):
            text = body.decode("utf-8", "surrogateescape")
            matches = self.filter.scan(text)
            if self.filter.should_block(matches):
                reason = match_description(matches)
                body = f'{{"error": "response blocked", "reason": "{reason}"}}'.encode("utf-8")
                status = 403
            elif matches:
                body = self.filter.apply(text, matches).encode("utf-8", "surrogateescape")

        return Response(body, status=status, headers=headers)