import re

import httpx
import pytest
from werkzeug.test import Client

from wardgate.filter import Filter, FilterAction, FilterConfig, Pattern
from wardgate.policy import Engine, Match, RateLimit, Rule
from wardgate.proxy import (
    AuthConfig,
    CredentialNotFoundError,
    Endpoint,
    Proxy,
    is_text_content,
)

UPSTREAM = "http://upstream.example.com"
BUILTINS = {"otp_codes": Pattern("otp_codes", re.compile(r"code is (\d{6})"), "OTP codes")}
VERIFY_BODY = b'{"message": "Your verification code is 123456"}'


class DictVault:
    def __init__(self, creds):
        self.creds = creds

    def get(self, name):
        try:
            return self.creds[name]
        except KeyError:
            raise CredentialNotFoundError(name) from None


class FakeApprovals:
    def __init__(self, approved=True, error=None):
        self.approved = approved
        self.error = error
        self.calls = []

    def request_approval(self, endpoint, method, path, agent_id):
        self.calls.append((endpoint, method, path, agent_id))
        if self.error is not None:
            raise self.error
        return self.approved


ALLOW_ALL = [Rule(match=Match(method="*"), action="allow")]


def make_client(handler=None, rules=None, upstream=UPSTREAM, creds=None, **kwargs):
    seen = []

    def record(request):
        seen.append(request)
        if handler is None:
            return httpx.Response(200, text="upstream response")
        return handler(request)

    endpoint = Endpoint(
        upstream=upstream,
        auth=AuthConfig(type="bearer", credential_env="TEST_CRED"),
        rules=list(ALLOW_ALL if rules is None else rules),
    )
    proxy = Proxy(
        endpoint,
        DictVault({"TEST_CRED": "token"} if creds is None else creds),
        Engine(endpoint.rules),
        client=httpx.Client(transport=httpx.MockTransport(record)),
        **kwargs,
    )
    return Client(proxy), seen


def test_injects_bearer_token():
    client, seen = make_client()
    response = client.get("/tasks")
    assert response.status_code == 200
    assert seen[0].headers["Authorization"] == "Bearer token"


def test_strips_agent_auth_header():
    client, seen = make_client()
    client.get("/tasks", headers={"Authorization": "Bearer placeholder"})
    assert seen[0].headers["Authorization"] == "Bearer token"


def test_preserves_original_headers():
    client, seen = make_client()
    client.get("/tasks", headers={"X-Custom-Header": "custom-value", "Content-Type": "application/json"})
    assert seen[0].headers["X-Custom-Header"] == "custom-value"
    assert seen[0].headers["Content-Type"] == "application/json"


def test_forwards_response_status_and_body():
    def handler(request):
        return httpx.Response(201, headers={"X-Response-Header": "response-value"}, content=b'{"id": 123}')

    client, seen = make_client(handler)
    response = client.post("/tasks", data=b'{"content": "test"}')
    assert response.status_code == 201
    assert response.get_data() == b'{"id": 123}'
    assert response.headers["X-Response-Header"] == "response-value"
    assert seen[0].content == b'{"content": "test"}'


def test_forwards_path_under_upstream_prefix_with_query():
    client, seen = make_client(upstream="http://upstream.example.com/api")
    client.get("/tasks?limit=5")
    assert seen[0].url.path == "/api/tasks"
    assert seen[0].url.query == b"limit=5"
    assert seen[0].url.host == "upstream.example.com"


def test_upstream_timeout_gives_504():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client, _ = make_client(handler, timeout=0.1)
    assert client.get("/slow").status_code == 504


def test_upstream_connection_error_gives_502():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, _ = make_client(handler)
    response = client.get("/tasks")
    assert response.status_code == 502
    assert "upstream error" in response.get_data(as_text=True)


def test_policy_deny_returns_403_without_calling_upstream():
    client, seen = make_client(
        rules=[Rule(match=Match(method="DELETE"), action="deny", message="Deletion not allowed")]
    )
    response = client.delete("/tasks/123")
    assert response.status_code == 403
    assert response.get_data(as_text=True) == "Deletion not allowed\n"
    assert seen == []


def test_allow_action():
    client, _ = make_client(rules=[Rule(match=Match(method="GET"), action="allow")])
    response = client.get("/tasks")
    assert response.status_code == 200
    assert response.get_data() == b"upstream response"


def test_rate_limited_action():
    rules = [Rule(match=Match(method="GET"), action="allow", rate_limit=RateLimit(2, "1m"))]
    client, seen = make_client(rules=rules)
    codes = [client.get("/tasks", headers={"X-Agent-ID": "test-agent"}).status_code for _ in range(2)]
    third = client.get("/tasks", headers={"X-Agent-ID": "test-agent"})
    assert codes == [200, 200]
    assert third.status_code == 429
    assert third.headers["Retry-After"] == "60"
    assert len(seen) == 2


def test_ask_without_approval_manager_gives_503():
    client, seen = make_client(rules=[Rule(match=Match(method="PUT"), action="ask")])
    assert client.put("/tasks/123").status_code == 503
    assert seen == []


def test_ask_approved_forwards():
    approvals = FakeApprovals(approved=True)
    client, seen = make_client(
        rules=[Rule(match=Match(method="PUT"), action="ask")], name="test-api", approvals=approvals
    )
    response = client.put("/tasks/123", headers={"X-Agent-ID": "test-agent"})
    assert response.status_code == 200
    assert approvals.calls == [("test-api", "PUT", "/tasks/123", "test-agent")]
    assert len(seen) == 1


def test_ask_denied_gives_403():
    approvals = FakeApprovals(approved=False)
    client, seen = make_client(
        rules=[Rule(match=Match(method="DELETE"), action="ask")], name="test-api", approvals=approvals
    )
    response = client.delete("/tasks/123", headers={"X-Agent-ID": "test-agent"})
    assert response.status_code == 403
    assert response.get_data(as_text=True) == "request denied by approver\n"
    assert seen == []


def test_ask_timeout_gives_403():
    approvals = FakeApprovals(error=TimeoutError("approval timed out"))
    client, _ = make_client(
        rules=[Rule(match=Match(method="PUT"), action="ask")], name="test-api", approvals=approvals
    )
    response = client.put("/tasks/123", headers={"X-Agent-ID": "test-agent"})
    assert response.status_code == 403
    assert "approval failed: approval timed out" in response.get_data(as_text=True)


def test_agent_id_falls_back_to_remote_addr():
    approvals = FakeApprovals()
    client, _ = make_client(rules=[Rule(match=Match(method="PUT"), action="ask")], approvals=approvals)
    client.put("/tasks/1", environ_overrides={"REMOTE_ADDR": "10.0.0.7"})
    assert approvals.calls[0][3] == "10.0.0.7"


def test_missing_credential_gives_500():
    client, seen = make_client(creds={})
    response = client.get("/tasks")
    assert response.status_code == 500
    assert seen == []


def _json_handler(content_type="application/json"):
    def handler(request):
        return httpx.Response(200, headers={"Content-Type": content_type}, content=VERIFY_BODY)

    return handler


def test_filter_blocks_sensitive_data():
    f = Filter(FilterConfig(enabled=True, patterns=["otp_codes"], action=FilterAction.BLOCK), BUILTINS)
    client, _ = make_client(_json_handler(), filter=f)
    response = client.get("/verify")
    assert response.status_code == 403
    body = response.get_data(as_text=True)
    assert "response blocked" in body
    assert "otp_codes" in body
    assert "123456" not in body


def test_filter_redacts_sensitive_data():
    f = Filter(
        FilterConfig(
            enabled=True, patterns=["otp_codes"], action=FilterAction.REDACT, replacement="[REDACTED]"
        ),
        BUILTINS,
    )
    client, _ = make_client(_json_handler(), filter=f)
    response = client.get("/verify")
    assert response.status_code == 200
    body = response.get_data(as_text=True)
    assert body == '{"message": "Your verification code is [REDACTED]"}'
    assert response.headers["Content-Length"] == str(len(body))


def test_filter_disabled_passes_through():
    f = Filter(FilterConfig(enabled=False))
    client, _ = make_client(_json_handler(), filter=f)
    response = client.get("/verify")
    assert response.status_code == 200
    assert "123456" in response.get_data(as_text=True)


def test_filter_skips_non_text_content():
    f = Filter(FilterConfig(enabled=True, patterns=["otp_codes"], action=FilterAction.BLOCK), BUILTINS)
    client, _ = make_client(_json_handler("image/png"), filter=f)
    response = client.get("/image")
    assert response.status_code == 200
    assert response.get_data() == VERIFY_BODY


@pytest.mark.parametrize(
    "content_type, expected",
    [
        ("text/html; charset=utf-8", True),
        ("Application/JSON", True),
        ("application/xml", True),
        ("application/javascript", True),
        ("image/png", False),
        ("application/octet-stream", False),
        ("", False),
    ],
)
def test_is_text_content(content_type, expected):
    assert is_text_content(content_type) is expected