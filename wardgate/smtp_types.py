"""Data types, errors and interfaces for outgoing mail."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Protocol


class SmtpError(Exception):
    """Base class for mail-sending errors."""


class SendFailedError(SmtpError):
    """The email could not be sent."""


class SmtpConnectionError(SmtpError):
    """The SMTP server could not be reached."""


class AuthFailedError(SmtpError):
    """SMTP authentication failed."""


class RecipientBlockedError(SmtpError):
    """A recipient is not allowed."""


class ContentBlockedError(SmtpError):
    """The email content was blocked by a filter."""


@dataclass
class Email:
    from_addr: str = ""
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    reply_to: str = ""
    subject: str = ""
    body: str = ""
    html_body: str = ""
    date: datetime | None = None


def _str_list(data: Mapping[str, Any], key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"field {key!r} must be a list of strings")
    return list(value)


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


@dataclass
class SendRequest:
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    reply_to: str = ""
    subject: str = ""
    body: str = ""
    html_body: str = ""

    @classmethod
    def from_json(cls, data: str | bytes | Mapping[str, Any]) -> "SendRequest":
        """Build from a JSON document or decoded object; raise ValueError if malformed."""
        if isinstance(data, (str, bytes, bytearray)):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as exc:
                raise ValueError(str(exc)) from exc
        if not isinstance(data, Mapping):
            raise ValueError("request body must be a JSON object")
        return cls(
            to=_str_list(data, "to"),
            cc=_str_list(data, "cc"),
            bcc=_str_list(data, "bcc"),
            reply_to=_str(data, "reply_to"),
            subject=_str(data, "subject"),
            body=_str(data, "body"),
            html_body=_str(data, "html_body"),
        )

    def to_json(self) -> str:
        data: dict[str, Any] = {"to": list(self.to)}
        if self.cc:
            data["cc"] = list(self.cc)
        if self.bcc:
            data["bcc"] = list(self.bcc)
        if self.reply_to:
            data["reply_to"] = self.reply_to
        data["subject"] = self.subject
        data["body"] = self.body
        if self.html_body:
            data["html_body"] = self.html_body
        return json.dumps(data, separators=(",", ":"))


@dataclass
class SendResponse:
    status: str = ""
    message_id: str = ""
    error: str = ""

    def to_json(self) -> str:
        data = {"status": self.status}
        if self.message_id:
            data["message_id"] = self.message_id
        if self.error:
            data["error"] = self.error
        return json.dumps(data, separators=(",", ":"))


class Client(ABC):
    """Something that can send email."""

    @abstractmethod
    def send(self, email: Email) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


@dataclass
class ConnectionConfig:
    host: str = ""
    port: int = 0
    username: str = ""
    password: str = ""
    tls: bool = False
    start_tls: bool = False
    insecure_skip_verify: bool = False
    from_addr: str = ""


@dataclass
class ApprovalRequest:
    endpoint: str = ""
    method: str = ""
    path: str = ""
    agent_id: str = ""
    content_type: str = ""
    summary: str = ""
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)


class ApprovalRequester(Protocol):
    def request_approval(self, endpoint: str, method: str, path: str, agent_id: str) -> bool: ...

    def request_approval_with_content(self, req: ApprovalRequest) -> bool: ...