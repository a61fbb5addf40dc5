"""IMAP connections backed by the standard library's imaplib."""

from __future__ import annotations

import email
import email.policy
import imaplib
import re
import ssl
from datetime import datetime, timezone
from email.utils import getaddresses
from typing import Any

from wardgate.imap_pool import (
    Connection,
    ConnectionConfig,
    ConnectionFailedError,
    Dialer,
    FetchOptions,
    Folder,
    FolderStatus,
    ImapError,
    Message,
)

_HEADER_QUERY = "(UID FLAGS BODY.PEEK[HEADER.FIELDS (SUBJECT FROM TO DATE)])"
_FULL_QUERY = "(UID FLAGS BODY.PEEK[])"
_LIST_RE = re.compile(rb'\((?P<flags>[^)]*)\) (?P<delim>"(?:[^"\\]|\\.)*"|NIL) ?(?P<name>.*)')
_RECORD_START = re.compile(rb"^\d+ \(")
_UID_RE = re.compile(rb"UID (\d+)")
_FLAGS_RE = re.compile(rb"FLAGS \(([^)]*)\)")


def _quote(name: str) -> str:
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unquote(raw: bytes) -> str:
    text = raw.decode("utf-8", "replace").strip()
    if text.upper() == "NIL":
        return ""
    if len(text) >= 2 and text[0] == text[-1] == '"':
        text = re.sub(r"\\(.)", r"\1", text[1:-1])
    return text


def _check(result: tuple[str, list[Any]], what: str) -> list[Any]:
    status, data = result
    if status != "OK":
        detail = data[0].decode("utf-8", "replace") if data and isinstance(data[0], bytes) else data
        raise ImapError(f"{what} failed: {detail}")
    return data


def _records(data: list[Any]) -> list[tuple[bytes, bytes | None]]:
    """Group imaplib FETCH output into (metadata, payload) pairs."""
    records: list[list[Any]] = []
    for item in data:
        if item is None:
            continue
        if isinstance(item, tuple):
            records.append([item[0], item[1]])
        elif records and not _RECORD_START.match(item):
            records[-1][0] += item
        else:
            records.append([item, None])
    return [(meta, payload) for meta, payload in records]


def _is_seen(meta: bytes) -> bool:
    found = _FLAGS_RE.search(meta)
    return bool(found) and b"\\Seen" in found.group(1).split()


def _address_list(values: list[Any]) -> list[str]:
    return [addr for _, addr in getaddresses([str(v) for v in values]) if addr]


def _message_from(meta: bytes, payload: bytes | None, uid: int | None = None) -> Message | None:
    if payload is None:
        return None
    if uid is None:
        found = _UID_RE.search(meta)
        uid = int(found.group(1)) if found else 0
    parsed = email.message_from_bytes(payload, policy=email.policy.default)
    from_addrs = _address_list(parsed.get_all("from", []))
    date_header = parsed.get("date")
    date = getattr(date_header, "datetime", None) if date_header is not None else None
    return Message(
        uid=uid,
        subject=str(parsed.get("subject", "")),
        from_addr=from_addrs[0] if from_addrs else "",
        to=_address_list(parsed.get_all("to", [])),
        date=date,
        seen=_is_seen(meta),
    )


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class IMAPDialer(Dialer):
    """Opens real IMAP sessions, over TLS or plain TCP, and logs in."""

    def dial(self, cfg: ConnectionConfig) -> "ImapConnection":
        try:
            if cfg.tls:
                context = ssl.create_default_context()
                if cfg.insecure_skip_verify:
                    context.check_hostname = False
                    context.verify_mode = ssl.CERT_NONE
                client = imaplib.IMAP4_SSL(cfg.host, cfg.port, ssl_context=context)
            else:
                client = imaplib.IMAP4(cfg.host, cfg.port)
        except (OSError, imaplib.IMAP4.error) as exc:
            raise ConnectionFailedError(f"failed to connect: {exc}") from exc

        try:
            client.login(cfg.username, cfg.password)
        except (OSError, imaplib.IMAP4.error) as exc:
            try:
                client.logout()
            except (OSError, imaplib.IMAP4.error):
                pass
            raise ConnectionFailedError(f"login failed: {exc}") from exc
        return ImapConnection(client, cfg.host, cfg.username)


class ImapConnection(Connection):
    """A logged-in IMAP session."""

    def __init__(self, client: Any, host: str, username: str) -> None:
        self.client = client
        self.host = host
        self.username = username

    def is_alive(self) -> bool:
        return self.client is not None

    def close(self) -> None:
        client, self.client = self.client, None
        if client is not None:
            client.logout()

    def list_folders(self) -> list[Folder]:
        data = _check(self.client.list(), "list folders")
        folders = []
        for item in data:
            if item is None:
                continue
            if isinstance(item, tuple):
                head, literal = item
                found = _LIST_RE.match(head)
                name = literal.decode("utf-8", "replace")
            else:
                found = _LIST_RE.match(item)
                name = _unquote(found.group("name")) if found else ""
            if found is None:
                continue
            folders.append(Folder(name=name, delimiter=_unquote(found.group("delim"))))
        return folders

    def select_folder(self, folder: str) -> FolderStatus:
        try:
            data = _check(self.client.select(_quote(folder)), "select folder")
        except imaplib.IMAP4.error as exc:
            raise ImapError(f"select folder failed: {exc}") from exc
        return FolderStatus(name=folder, messages=int(data[0] or 0))

    def fetch_messages(self, opts: FetchOptions) -> list[Message]:
        total = self.select_folder(opts.folder).messages
        if total == 0:
            return []
        limit = opts.limit if 0 < opts.limit <= total else total
        start = total - limit + 1
        try:
            data = _check(self.client.fetch(f"{start}:{total}", _HEADER_QUERY), "fetch")
        except imaplib.IMAP4.error as exc:
            raise ImapError(f"fetch failed: {exc}") from exc

        messages = []
        for meta, payload in _records(data):
            msg = _message_from(meta, payload)
            if msg is None:
                continue
            if opts.since is not None and (msg.date is None or _aware(msg.date) < _aware(opts.since)):
                continue
            if opts.before is not None and msg.date is not None and _aware(msg.date) > _aware(opts.before):
                continue
            messages.append(msg)
        return messages

    def get_message(self, uid: int) -> Message:
        try:
            data = _check(self.client.uid("FETCH", str(uid), _FULL_QUERY), "fetch")
        except imaplib.IMAP4.error as exc:
            raise ImapError(f"fetch failed: {exc}") from exc
        for meta, payload in _records(data):
            msg = _message_from(meta, payload, uid)
            if msg is not None:
                msg.body = payload.decode("utf-8", "replace")
                return msg
        raise ImapError("message not found")

    def mark_read(self, uid: int) -> None:
        try:
            _check(self.client.uid("STORE", str(uid), "+FLAGS", "(\\Seen)"), "mark read")
        except imaplib.IMAP4.error as exc:
            raise ImapError(f"mark read failed: {exc}") from exc

    def move_message(self, uid: int, dest_folder: str) -> None:
        dest = _quote(dest_folder)
        try:
            _check(self.client.uid("MOVE", str(uid), dest), "move")
            return
        except imaplib.IMAP4.error:
            pass
        except ImapError:
            pass
        try:
            _check(self.client.uid("COPY", str(uid), dest), "copy")
        except imaplib.IMAP4.error as exc:
            raise ImapError(f"copy failed: {exc}") from exc
        try:
            _check(self.client.uid("STORE", str(uid), "+FLAGS", "(\\Deleted)"), "delete flag")
        except imaplib.IMAP4.error as exc:
            raise ImapError(f"delete flag failed: {exc}") from exc
        try:
            _check(self.client.expunge(), "expunge")
        except imaplib.IMAP4.error as exc:
            raise ImapError(f"expunge failed: {exc}") from exc