# wardgate

wardgate is a library for building a gateway between automated agents and the
services they act on. Agents never hold upstream credentials: every request is
checked against a policy, credentials are added on the way out, and sensitive
data such as one-time codes can be redacted or blocked on the way back.

The gateway pieces (`Proxy`, the IMAP `Handler` and the SMTP `Handler`) are
WSGI applications; host them with any WSGI server.

## Modules

- `wardgate.policy`: `Engine` evaluates an ordered list of `Rule`s, each with a
  `Match` (method and path), an action name (`allow`, `deny`, `ask`, `queue`;
  anything else denies), an optional `message`, an optional `TimeRange`
  (`days` such as `"mon"`, `hours` such as `"09:00-17:00"`) and an optional
  `RateLimit` (`max_requests`, `window` such as `"1m"` or `"1h30m"`). The first
  matching rule wins; a rule outside its time range is skipped; with no match
  the result is `Action.DENY` with the message `"no matching rule - default
  deny"`. Exceeding a rule's rate limit gives `Action.RATE_LIMITED`. Method `*`
  or empty matches any method. Paths: exact match, a trailing `*` as a prefix
  match, `*` for one segment, `**` for any number of segments
  (`match_path`, `match_glob`). `Engine` takes an optional `clock` callable for
  the time-range checks.
- `wardgate.ratelimit`: `Limiter` (sliding window: `allow`, `count`, `reset`)
  and `Registry` (one limiter per key: `get`, `allow`).
- `wardgate.filter`: `Filter` built from a `FilterConfig`; `scan` returns
  `Match` objects ordered by position (a pattern's first capture group is
  reported when it took part), `apply` replaces the matches with the
  replacement text, `should_block` / `should_ask` follow the configured
  `FilterAction`, and `match_description` summarises matches.
  `default_config()` and `parse_action()` are also provided.
- `wardgate.proxy`: `Proxy`, a WSGI reverse proxy for one `Endpoint`.
- `wardgate.imap_pool`, `wardgate.imap_handler`, `wardgate.imap_client`: IMAP
  data types, a connection `Pool`, a REST `Handler`, and `IMAPDialer` /
  `ImapConnection` built on `imaplib`.
- `wardgate.smtp_types`, `wardgate.smtp_client`, `wardgate.smtp_handler`:
  email types and errors, `SMTPClient` built on `smtplib`, and a REST `Handler`.
- `wardgate.notify`: `WebhookChannel` and `SlackChannel` (`slack_payload`
  builds the Slack blocks); failures raise `NotifyError`.

## Evaluating a policy

```python
from wardgate.policy import Action, Engine, Match, RateLimit, Rule

engine = Engine([
    Rule(match=Match(method="GET", path="/tasks*"), action="allow",
         rate_limit=RateLimit(max_requests=10, window="1m")),
    Rule(match=Match(method="DELETE"), action="deny", message="no deletes"),
])

assert engine.evaluate_with_key("GET", "/tasks/123", "agent-1").action is Action.ALLOW
assert engine.evaluate("DELETE", "/tasks/123").message == "no deletes"
```

## Redacting sensitive data

The package ships no built-in pattern set. Give patterns either as custom
regular expressions or as a `builtins` mapping of named `Pattern`s; naming a
pattern that is not in `builtins` raises `ValueError`, as does an invalid
regular expression.

```python
import re
from wardgate.filter import CustomPattern, Filter, FilterAction, FilterConfig, Pattern

f = Filter(FilterConfig(
    enabled=True,
    custom_patterns=[CustomPattern(name="otp", pattern=r"code is (\d{6})")],
    action=FilterAction.REDACT,
    replacement="[REDACTED]",
))
text = "Your verification code is 123456"
print(f.apply(text, f.scan(text)))   # Your verification code is [REDACTED]

named = Filter(
    FilterConfig(enabled=True, patterns=["otp_codes"]),
    builtins={"otp_codes": Pattern("otp_codes", re.compile(r"\b\d{6}\b"))},
)
```

An enabled filter with no patterns at all asks for `otp_codes`,
`verification_links` and `api_keys`, so those names must then be present in
`builtins`.

## HTTP proxy

```python
import os
from wardgate.policy import Engine, Match, Rule
from wardgate.proxy import AuthConfig, CredentialNotFoundError, Endpoint, Proxy

class EnvVault:
    def get(self, name):
        try:
            return os.environ[name]
        except KeyError:
            raise CredentialNotFoundError(name) from None

endpoint = Endpoint(
    upstream="https://api.example.com",
    auth=AuthConfig(type="bearer", credential_env="UPSTREAM_TOKEN"),
    rules=[Rule(match=Match(method="GET"), action="allow")],
)
app = Proxy(endpoint, EnvVault(), Engine(endpoint.rules), name="example-api")
```

The agent is identified by `X-Agent-ID` (else the remote address), which is
the rate-limit key. Responses: `403` on deny, `429` with `Retry-After: 60`
when rate limited, `503` for an `ask` rule with no `approvals` object, `403`
when approval is refused or fails, `500` when the vault has no credential,
`504` on upstream timeout (`timeout`, default 30 seconds) and `502` on other
upstream errors. For `bearer` auth the agent's `Authorization` header is
replaced with the upstream credential. With an enabled `filter`, text, JSON,
XML and JavaScript responses are scanned: a blocking filter turns them into a
`403` JSON error, otherwise matches are redacted.

An approval object is anything with
`request_approval(endpoint, method, path, agent_id) -> bool`.

## IMAP gateway

```python
from wardgate.imap_client import IMAPDialer
from wardgate.imap_handler import Handler, HandlerConfig
from wardgate.imap_pool import ConnectionConfig, Pool, PoolConfig
from wardgate.policy import Engine, Match, Rule

password = "password"
pool = Pool(IMAPDialer(), PoolConfig(max_conns_per_endpoint=5, idle_timeout=300))
app = Handler(pool, Engine([Rule(match=Match(method="*"), action="allow")]), HandlerConfig(
    endpoint_name="mail",
    connection_config=ConnectionConfig(host="imap.example.com", port=993,
                                       username="user@example.com", password=password, tls=True),
))
```

Routes:

- `GET /folders`: list folders
- `GET /folders/{folder}`: list the most recent messages (`limit`, `since`,
  `before` as `YYYY-MM-DD`)
- `GET /folders/{folder}/messages/{uid}`: one message with its body
- `POST /folders/{folder}/messages/{uid}/mark-read`
- `POST /folders/{folder}/messages/{uid}/move?to={dest}`

Folder names containing `/` are URL-encoded, for example `Folder%2FOrders`.
A failed connection gives `502`; an invalid UID or missing `to` gives `400`.
With an enabled filter, subjects are redacted, and a message body that a
blocking filter matches is refused with `403`.

`Pool.get` waits for a free slot up to its `timeout` (forever when `None`)
and then raises `ConnectionTimeoutError`; call `cleanup_idle()` yourself to
close idle connections, and `close()` to close them all.

## SMTP gateway

`POST /send` with a JSON body (`to`, `cc`, `bcc`, `reply_to`, `subject`,
`body`, `html_body`). `HandlerConfig` holds `endpoint_name`, `from_addr`,
`allowed_recipients`, `known_recipients`, `ask_new_recipients` and
`blocked_keywords`; recipient entries are exact addresses or `@domain`.
Approval is asked for when the policy says `ask`, when `ask_new_recipients`
is set and a recipient is not known, or when the filter finds sensitive data.
The approval object needs `request_approval_with_content(ApprovalRequest)`.
A successful send answers `{"status":"sent"}`; a send failure gives `502`.

`SMTPClient(ConnectionConfig(...))` sends over implicit TLS (`tls`), plain
TCP, or plain TCP upgraded with `start_tls`, logging in when `username` is set.

## What the package does not do

- It has no command and no server of its own; it does not read configuration
  files, and nothing wires endpoints together into one running gateway.
- It does not authenticate agents; `X-Agent-ID` is trusted as given.
- It provides no approval manager, no credential vault and no audit log: the
  proxy and SMTP handler take approval and vault objects that you supply.
- It ships no built-in sensitive-data patterns.