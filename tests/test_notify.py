import json

import httpx
import pytest

from wardgate.notify import Message, NotifyError, SlackChannel, WebhookChannel, slack_payload


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def _recording_client(status=200):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(status)

    return _client(handler), seen


def test_webhook_send_posts_json_with_headers():
    client, seen = _recording_client()
    channel = WebhookChannel("http://hooks.example.com/notify", {"X-Custom": "header"}, client=client)
    msg = Message(
        title="Test",
        body="Test body",
        request_id="req-123",
        endpoint="test-api",
        method="POST",
        path="/tasks",
        agent_id="agent-1",
    )

    channel.send(msg)

    assert len(seen) == 1
    request = seen[0]
    assert request.method == "POST"
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["X-Custom"] == "header"
    received = json.loads(request.content)
    assert received["title"] == msg.title == "Test"
    assert received["request_id"] == msg.request_id == "req-123"
    assert received["agent_id"] == msg.agent_id == "agent-1"


def test_webhook_omits_empty_optional_fields():
    client, seen = _recording_client()
    msg = Message(title="Test")
    WebhookChannel("http://hooks.example.com/notify", client=client).send(msg)
    received = json.loads(seen[0].content)
    assert "agent_id" not in received
    assert "dashboard_url" not in received
    assert received["body"] == msg.body == ""
    assert received["title"] == msg.title


def test_webhook_send_error_status():
    client, _ = _recording_client(status=500)
    channel = WebhookChannel("http://hooks.example.com/notify", None, client=client)
    with pytest.raises(NotifyError, match="500"):
        channel.send(Message(title="Test"))


def test_webhook_transport_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    channel = WebhookChannel("http://hooks.example.com/notify", client=_client(handler))
    with pytest.raises(NotifyError, match="send request"):
        channel.send(Message(title="Test"))


def test_slack_send():
    client, seen = _recording_client()
    channel = SlackChannel("http://slack.example.com/hook", client=client)
    msg = Message(
        title="Approval Required",
        body="Agent wants to POST /tasks",
        request_id="req-123",
        endpoint="test-api",
        method="POST",
        path="/tasks",
        agent_id="agent-1",
        dashboard_url="http://localhost/ui/",
    )

    channel.send(msg)

    received = json.loads(seen[0].content)
    assert received == slack_payload(msg)
    assert received["text"] == "Approval Required: Agent wants to POST /tasks"
    assert len(received["blocks"]) == 4
    button = received["blocks"][3]["elements"][0]
    assert button["url"] == "http://localhost/ui/"
    assert button["text"]["text"] == "Review in Dashboard"


def test_slack_payload_without_dashboard():
    payload = slack_payload(Message(title="T", body="B", endpoint="e", agent_id="a", method="GET", path="/p"))
    assert [block["type"] for block in payload["blocks"]] == ["header", "section", "section"]
    fields = [f["text"] for f in payload["blocks"][1]["fields"]]
    assert fields == ["*Endpoint:* e", "*Agent:* a", "*Method:* GET", "*Path:* /p"]


def test_slack_error_status():
    client, _ = _recording_client(status=400)
    with pytest.raises(NotifyError, match="slack returned status 400"):
        SlackChannel("http://slack.example.com/hook", client=client).send(Message(title="T"))