"""REST front end for IMAP mailboxes, guarded by policy and filtering."""

from __future__ import annotations

import json
import re
import sys
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol
from urllib.parse import unquote

from werkzeug.wrappers import Request, Response

from wardgate.filter import Filter, match_description
from wardgate.imap_pool import Connection, ConnectionConfig, FetchOptions
from wardgate.policy import Action, Engine

_MAX_UID = 2**32 - 1
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_JSON_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


class PoolGetter(Protocol):
    def get(self, endpoint: str, cfg: ConnectionConfig) -> Connection: ...

    def put(self, endpoint: str, conn: Connection) -> None: ...


@dataclass
class HandlerConfig:
    endpoint_name: str = ""
    connection_config: ConnectionConfig = field(default_factory=ConnectionConfig)


def decode_folder(encoded: str) -> str:
    """Percent-decode a folder name; malformed escapes give an empty string."""
    if _BAD_ESCAPE.search(encoded):
        return ""
    return unquote(encoded)


def _error(message: str, status: int) -> Response:
    response = Response(message + "\n", status=status, content_type="text/plain; charset=utf-8")
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, list):
        return [_to_jsonable(item) for item in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _json(value: Any) -> Response:
    text = json.dumps(_to_jsonable(value), ensure_ascii=False, separators=(",", ":"))
    for raw, escaped in _JSON_ESCAPES:
        text = text.replace(raw, escaped)
    return Response((text + "\n").encode("utf-8"), status=200, content_type="application/json")


def _parse_uid(text: str) -> int | None:
    if not re.fullmatch(r"[0-9]+", text):
        return None
    uid = int(text)
    return uid if uid <= _MAX_UID else None


def _parse_date(text: str) -> datetime | None:
    if not re.fullmatch(r"[0-9]{4}-[0-9]{2}-[0-9]{2}", text):
        return None
    try:
        return datetime.strptime(text, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _log(text: str) -> None:
    print(text, file=sys.stderr)


class Handler:
    """WSGI application mapping REST paths onto IMAP operations.

    Routes:
      GET  /folders
      GET  /folders/{folder}
      GET  /folders/{folder}/messages/{uid}
      POST /folders/{folder}/messages/{uid}/mark-read
      POST /folders/{folder}/messages/{uid}/move?to={dest}
    """

    def __init__(
        self,
        pool: PoolGetter,
        engine: Engine,
        config: HandlerConfig,
        filter: Filter | None = None,
    ) -> None:
        self.pool = pool
        self.engine = engine
        self.config = config
        self.filter = filter

    def __call__(self, environ, start_response) -> Iterable[bytes]:
        request = Request(environ)
        return self._handle(request)(environ, start_response)

    @property
    def _filtering(self) -> bool:
        return self.filter is not None and self.filter.enabled

    def _handle(self, request: Request) -> Response:
        agent_id = request.headers.get("X-Agent-ID") or request.remote_addr or ""

        decision = self.engine.evaluate_with_key(request.method, request.path, agent_id)
        if decision.action is Action.DENY:
            return _error(decision.message, 403)
        if decision.action is Action.RATE_LIMITED:
            response = _error(decision.message, 429)
            response.headers["Retry-After"] = "60"
            return response

        name = self.config.endpoint_name
        try:
            conn = self.pool.get(name, self.config.connection_config)
        except Exception as exc:
            _log(f"IMAP connection error for {name}: {exc}")
            return _error("failed to connect to IMAP server", 502)
        try:
            return self._route(request, conn)
        finally:
            self.pool.put(name, conn)

    def _route(self, request: Request, conn: Connection) -> Response:
        path = request.path
        if path.startswith("/"):
            path = path[1:]
        parts = path.split("/")
        method = request.method
        idx = parts.index("messages") if "messages" in parts else -1
        in_folders = parts[0] == "folders"

        if path == "folders" and method == "GET":
            return self._list_folders(conn)

        if len(parts) >= 2 and in_folders and idx == -1 and method == "GET":
            folder = decode_folder("/".join(parts[1:]))
            if not folder:
                return _error("invalid folder name", 400)
            return self._fetch_messages(request, conn, folder)

        if in_folders and idx > 1:
            folder_text = "/".join(parts[1:idx])
            if len(parts) == idx + 2 and method == "GET":
                operation = self._get_message
            elif len(parts) == idx + 3 and parts[-1] == "mark-read" and method == "POST":
                operation = self._mark_read
            elif len(parts) == idx + 3 and parts[-1] == "move" and method == "POST":
                operation = self._move_message
            else:
                return _error("not found", 404)
            folder = decode_folder(folder_text)
            if not folder:
                return _error("invalid folder name", 400)
            return operation(request, conn, folder, parts[idx + 1])

        return _error("not found", 404)

    def _list_folders(self, conn: Connection) -> Response:
        try:
            folders = conn.list_folders()
        except Exception:
            return _error("failed to list folders", 500)
        return _json(folders)

    def _fetch_messages(self, request: Request, conn: Connection, folder: str) -> Response:
        opts = FetchOptions(folder=folder)
        limit = request.args.get("limit", "")
        if re.fullmatch(r"[+-]?[0-9]+", limit):
            opts.limit = int(limit)
        since = request.args.get("since", "")
        if since:
            opts.since = _parse_date(since)
        before = request.args.get("before", "")
        if before:
            opts.before = _parse_date(before)

        try:
            messages = conn.fetch_messages(opts)
        except Exception:
            return _error("failed to fetch messages", 500)

        if self._filtering:
            messages = [self._redact_subject(msg) for msg in messages]
        return _json(messages)

    def _redact_subject(self, msg):
        matches = self.filter.scan(msg.subject)
        if not matches:
            return msg
        return replace(msg, subject=self.filter.apply(msg.subject, matches))

    def _select(self, conn: Connection, folder: str) -> Response | None:
        try:
            conn.select_folder(folder)
        except Exception as exc:
            _log(f"IMAP SelectFolder error for '{folder}': {exc}")
            return _error("failed to select folder", 500)
        return None

    def _get_message(self, request: Request, conn: Connection, folder: str, uid_text: str) -> Response:
        uid = _parse_uid(uid_text)
        if uid is None:
            return _error("invalid message UID", 400)
        failure = self._select(conn, folder)
        if failure is not None:
            return failure
        try:
            msg = conn.get_message(uid)
        except Exception as exc:
            _log(f"IMAP GetMessage error for UID {uid} in '{folder}': {exc}")
            return _error("failed to get message", 500)

        if self._filtering:
            matches = self.filter.scan(msg.body)
            if self.filter.should_block(matches):
                return _error(f"message blocked: {match_description(matches)}", 403)
            if matches:
                msg = replace(msg, body=self.filter.apply(msg.body, matches))
            msg = self._redact_subject(msg)
        return _json(msg)

    def _mark_read(self, request: Request, conn: Connection, folder: str, uid_text: str) -> Response:
        uid = _parse_uid(uid_text)
        if uid is None:
            return _error("invalid message UID", 400)
        failure = self._select(conn, folder)
        if failure is not None:
            return failure
        try:
            conn.mark_read(uid)
        except Exception as exc:
            _log(f"IMAP MarkRead error for UID {uid}: {exc}")
            return _error("failed to mark message as read", 500)
        return _json({"status": "ok"})

    def _move_message(self, request: Request, conn: Connection, folder: str, uid_text: str) -> Response:
        uid = _parse_uid(uid_text)
        if uid is None:
            return _error("invalid message UID", 400)
        dest = request.args.get("to", "")
        if not dest:
            return _error("missing 'to' parameter", 400)
        failure = self._select(conn, folder)
        if failure is not None:
            return failure
        try:
            conn.move_message(uid, dest)
        except Exception as exc:
            _log(f"IMAP MoveMessage error for UID {uid} to '{dest}': {exc}")
            return _error("failed to move message", 500)
        return _json({"status": "ok"})