"""Notification channels: generic JSON webhooks and Slack incoming webhooks."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

DEFAULT_TIMEOUT = 10.0


class NotifyError(Exception):
    """A notification could not be delivered."""


@dataclass
class Message:
    title: str = ""
    body: str = ""
    request_id: str = ""
    endpoint: str = ""
    method: str = ""
    path: str = ""
    agent_id: str = ""
    dashboard_url: str = ""

    def to_dict(self) -> dict[str, str]:
        """JSON form; empty agent and dashboard fields are left out."""
        data = {
            "title": self.title,
            "body": self.body,
            "request_id": self.request_id,
            "endpoint": self.endpoint,
            "method": self.method,
            "path": self.path,
        }
        if self.agent_id:
            data["agent_id"] = self.agent_id
        if self.dashboard_url:
            data["dashboard_url"] = self.dashboard_url
        return data


class Channel(ABC):
    """Somewhere a notification can be sent."""

    @abstractmethod
    def send(self, msg: Message) -> None:
        """Deliver ``msg``; raise NotifyError on failure."""


def _post_json(client: httpx.Client, url: str, payload: Any, headers: Mapping[str, str]) -> httpx.Response:
    body = json.dumps(payload).encode("utf-8")
    request_headers = {"Content-Type": "application/json", **headers}
    try:
        return client.post(url, content=body, headers=request_headers)
    except httpx.HTTPError as exc:
        raise NotifyError(f"send request: {exc}") from exc


class WebhookChannel(Channel):
    """Posts the message as JSON to a URL, with optional extra headers."""

    def __init__(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self.headers = dict(headers or {})
        self._client = client or httpx.Client(timeout=DEFAULT_TIMEOUT)

    def send(self, msg: Message) -> None:
        response = _post_json(self._client, self.url, msg.to_dict(), self.headers)
        if response.status_code >= 400:
            raise NotifyError(f"webhook returned status {response.status_code}")


def slack_payload(msg: Message) -> dict[str, Any]:
    """Build the Slack block-kit payload for a message."""
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": msg.title}},
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Endpoint:* {msg.endpoint}"},
                {"type": "mrkdwn", "text": f"*Agent:* {msg.agent_id}"},
                {"type": "mrkdwn", "text": f"*Method:* {msg.method}"},
                {"type": "mrkdwn", "text": f"*Path:* {msg.path}"},
            ],
        },
        {"type": "section", "text": {"type": "mrkdwn", "text": msg.body}},
    ]
    if msg.dashboard_url:
        blocks.append(
            {
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "Review in Dashboard"},
                        "style": "primary",
                        "url": msg.dashboard_url,
                    }
                ],
            }
        )
    return {"text": f"{msg.title}: {msg.body}", "blocks": blocks}


class SlackChannel(Channel):
    """Posts messages to a Slack incoming webhook."""

    def __init__(self, webhook_url: str, client: httpx.Client | None = None) -> None:
        self.webhook_url = webhook_url
        self._client = client or httpx.Client(timeout=DEFAULT_TIMEOUT)

    def send(self, msg: Message) -> None:
        response = _post_json(self._client, self.webhook_url, slack_payload(msg), {})
        if response.status_code >= 400:
            raise NotifyError(f"slack returned status {response.status_code}")