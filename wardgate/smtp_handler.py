"""REST front end for sending email, guarded by policy, allowlists and filtering."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import Iterable

from werkzeug.wrappers import Request, Response

from wardgate.filter import Filter, Match, match_description
from wardgate.policy import Action, Engine
from wardgate.smtp_types import (
    ApprovalRequest,
    ApprovalRequester,
    Client,
    Email,
    SendRequest,
    SendResponse,
)


@dataclass
class HandlerConfig:
    endpoint_name: str = ""
    from_addr: str = ""
    allowed_recipients: list[str] = field(default_factory=list)
    known_recipients: list[str] = field(default_factory=list)
    ask_new_recipients: bool = False
    blocked_keywords: list[str] = field(default_factory=list)


def _error(message: str, status: int) -> Response:
    response = Response(message + "\n", status=status, content_type="text/plain; charset=utf-8")
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def _log(text: str) -> None:
    print(text, file=sys.stderr)


def _address_matches(address: str, entries: Iterable[str]) -> bool:
    """True if ``address`` equals an entry, or ends with an ``@domain`` entry."""
    address = address.lower()
    for entry in entries:
        entry = entry.lower()
        if entry.startswith("@"):
            if address.endswith(entry):
                return True
        elif address == entry:
            return True
    return False


class Handler:
    """WSGI application exposing ``POST /send``."""

    def __init__(
        self,
        client: Client,
        engine: Engine,
        config: HandlerConfig,
        approvals: ApprovalRequester | None = None,
        filter: Filter | None = None,
    ) -> None:
        self.client = client
        self.engine = engine
        self.config = config
        self.approvals = approvals
        self.filter = filter

    def __call__(self, environ, start_response) -> Iterable[bytes]:
        request = Request(environ)
        return self._handle(request)(environ, start_response)

    def _handle(self, request: Request) -> Response:
        agent_id = request.headers.get("X-Agent-ID") or request.remote_addr or ""
        path = request.path[1:] if request.path.startswith("/") else request.path
        if path == "send" and request.method == "POST":
            return self._send(request, agent_id)
        return _error("not found", 404)

    def _send(self, request: Request, agent_id: str) -> Response:
        decision = self.engine.evaluate_with_key(request.method, request.path, agent_id)
        if decision.action is Action.DENY:
            return _error(decision.message, 403)
        if decision.action is Action.RATE_LIMITED:
            response = _error(decision.message, 429)
            response.headers["Retry-After"] = "60"
            return response

        try:
            req = SendRequest.from_json(request.get_data())
        except ValueError as exc:
            return _error(f"invalid JSON: {exc}", 400)

        if not req.to:
            return _error("at least one recipient required", 400)

        email = Email(
            from_addr=self.config.from_addr,
            to=list(req.to),
            cc=list(req.cc),
            bcc=list(req.bcc),
            reply_to=req.reply_to,
            subject=req.subject,
            body=req.body,
            html_body=req.html_body,
        )
        recipients = [*email.to, *email.cc, *email.bcc]

        if self.config.allowed_recipients:
            for rcpt in recipients:
                if not self.is_recipient_allowed(rcpt):
                    return _error(f"recipient not allowed: {rcpt}", 403)

        if self.config.blocked_keywords and (
            self.contains_blocked_keyword(email.subject)
            or self.contains_blocked_keyword(email.body)
        ):
            return _error("email blocked by content filter", 403)

        needs_approval = decision.action is Action.ASK
        sensitive_reason = ""

        if self.config.ask_new_recipients and not needs_approval:
            needs_approval = any(not self.is_known_recipient(r) for r in recipients)

        if self.filter is not None and self.filter.enabled and not needs_approval:
            matches: list[Match] = [
                *self.filter.scan(email.subject),
                *self.filter.scan(email.body),
                *self.filter.scan(email.html_body),
            ]
            if matches:
                needs_approval = True
                sensitive_reason = match_description(matches)

        if needs_approval:
            if self.approvals is None:
                return _error("ask action requires approval manager configuration", 503)
            summary = f"Email to {', '.join(email.to)}: {email.subject}"
            if sensitive_reason:
                summary = f"[SENSITIVE DATA] {summary} - {sensitive_reason}"
            try:
                approved = self.approvals.request_approval_with_content(
                    ApprovalRequest(
                        endpoint=self.config.endpoint_name,
                        method=request.method,
                        path="/send",
                        agent_id=agent_id,
                        content_type="email",
                        summary=summary,
                        body=req.to_json(),
                        headers={"Content-Type": "application/json"},
                    )
                )
            except Exception as exc:  # any approval failure, timeouts included, refuses
                return _error(f"approval failed: {exc}", 403)
            if not approved:
                return _error("request denied by approver", 403)

        try:
            self.client.send(email)
        except Exception as exc:
            _log(f"SMTP send error for {self.config.endpoint_name}: {exc}")
            return _error("failed to send email", 502)

        body = SendResponse(status="sent").to_json() + "\n"
        return Response(body.encode("utf-8"), status=200, content_type="application/json")

    def is_recipient_allowed(self, email: str) -> bool:
        """True if the address is on the allowlist, exactly or by ``@domain``."""
        return _address_matches(email, self.config.allowed_recipients)

    def is_known_recipient(self, email: str) -> bool:
        """True if the address is known, exactly or by ``@domain``."""
        return _address_matches(email, self.config.known_recipients)

    def contains_blocked_keyword(self, text: str) -> bool:
        """Case-insensitive search for any blocked keyword."""
        lowered = text.lower()
        return any(keyword.lower() in lowered for keyword in self.config.blocked_keywords)