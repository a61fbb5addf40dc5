"""IMAP data types and a per-endpoint connection pool."""

from __future__ import annotations

import contextlib
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

DEFAULT_MAX_CONNS = 5
DEFAULT_IDLE_TIMEOUT = 300.0

_ZERO_TIME = "0001-01-01T00:00:00Z"


class ImapError(Exception):
    """Base class for IMAP pool and connection errors."""


class ConnectionFailedError(ImapError):
    """The IMAP server could not be reached or refused the login."""


class MaxConnsReachedError(ImapError):
    """No more connections may be opened for this endpoint."""


class ConnectionTimeoutError(ImapError):
    """No connection slot became free in time."""


@dataclass
class ConnectionConfig:
    host: str = ""
    port: int = 0
    username: str = ""
    password: str = ""
    tls: bool = False
    insecure_skip_verify: bool = False


@dataclass
class Folder:
    name: str
    delimiter: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "delimiter": self.delimiter}


@dataclass
class FolderStatus:
    name: str
    messages: int = 0
    unseen: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "messages": self.messages, "unseen": self.unseen}


def _format_time(value: datetime | None) -> str:
    if value is None:
        return _ZERO_TIME
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    if offset is None or not offset:
        return text + "Z"
    seconds = int(offset.total_seconds())
    sign = "+" if seconds >= 0 else "-"
    seconds = abs(seconds)
    return f"{text}{sign}{seconds // 3600:02d}:{(seconds % 3600) // 60:02d}"


@dataclass
class Message:
    uid: int
    subject: str = ""
    from_addr: str = ""
    to: list[str] = field(default_factory=list)
    date: datetime | None = None
    body: str = ""
    seen: bool = False

    def to_dict(self) -> dict[str, Any]:
        """JSON form; empty recipients and body are left out."""
        data: dict[str, Any] = {
            "uid": self.uid,
            "subject": self.subject,
            "from": self.from_addr,
        }
        if self.to:
            data["to"] = list(self.to)
        data["date"] = _format_time(self.date)
        if self.body:
            data["body"] = self.body
        data["seen"] = self.seen
        return data


@dataclass
class FetchOptions:
    folder: str
    limit: int = 0
    since: datetime | None = None
    before: datetime | None = None


class Connection(ABC):
    """An open, logged-in IMAP session."""

    @abstractmethod
    def is_alive(self) -> bool: ...

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def list_folders(self) -> list[Folder]: ...

    @abstractmethod
    def select_folder(self, folder: str) -> FolderStatus: ...

    @abstractmethod
    def fetch_messages(self, opts: FetchOptions) -> list[Message]: ...

    @abstractmethod
    def get_message(self, uid: int) -> Message: ...

    @abstractmethod
    def mark_read(self, uid: int) -> None: ...

    @abstractmethod
    def move_message(self, uid: int, dest_folder: str) -> None: ...


class Dialer(ABC):
    """Opens new IMAP connections."""

    @abstractmethod
    def dial(self, cfg: ConnectionConfig) -> Connection: ...


@dataclass
class PoolConfig:
    max_conns_per_endpoint: int = DEFAULT_MAX_CONNS
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT


@dataclass
class _PooledConn:
    conn: Connection | None
    last_used: float
    in_use: bool


class _EndpointPool:
    def __init__(self, config: ConnectionConfig, max_conns: int) -> None:
        self.config = config
        self.max_conns = max_conns
        self.conns: list[_PooledConn] = []
        self.lock = threading.Lock()
        self._slots = threading.Condition()
        self._held = 0

    def acquire(self, timeout: float | None) -> bool:
        with self._slots:
            if not self._slots.wait_for(lambda: self._held < self.max_conns, timeout):
                return False
            self._held += 1
            return True

    def release(self) -> None:
        with self._slots:
            if self._held > 0:
                self._held -= 1
                self._slots.notify()


class Pool:
    """Hands out IMAP connections, at most a fixed number per endpoint."""

    def __init__(self, dialer: Dialer, config: PoolConfig | None = None) -> None:
        config = config or PoolConfig()
        if config.max_conns_per_endpoint <= 0:
            config.max_conns_per_endpoint = DEFAULT_MAX_CONNS
        if config.idle_timeout <= 0:
            config.idle_timeout = DEFAULT_IDLE_TIMEOUT
        self.dialer = dialer
        self.config = config
        self._lock = threading.Lock()
        self._pools: dict[str, _EndpointPool] = {}

    def _endpoint_pool(self, endpoint: str, cfg: ConnectionConfig) -> _EndpointPool:
        with self._lock:
            ep = self._pools.get(endpoint)
            if ep is None:
                ep = _EndpointPool(cfg, self.config.max_conns_per_endpoint)
                self._pools[endpoint] = ep
            return ep

    def get(self, endpoint: str, cfg: ConnectionConfig, timeout: float | None = None) -> Connection:
        """Return an idle live connection or dial a new one.

        Waits up to ``timeout`` seconds (forever when None) for a free slot,
        then raises ConnectionTimeoutError.
        """
        ep = self._endpoint_pool(endpoint, cfg)
        if not ep.acquire(timeout):
            raise ConnectionTimeoutError("connection timeout")

        with ep.lock:
            for pc in ep.conns:
                if not pc.in_use and pc.conn is not None and pc.conn.is_alive():
                    pc.in_use = True
                    pc.last_used = time.monotonic()
                    return pc.conn

        try:
            conn = self.dialer.dial(cfg)
        except BaseException:
            ep.release()
            raise

        with ep.lock:
            ep.conns.append(_PooledConn(conn, time.monotonic(), True))
        return conn

    def put(self, endpoint: str, conn: Connection) -> None:
        """Give a connection back; dead ones are closed and dropped."""
        with self._lock:
            ep = self._pools.get(endpoint)
        if ep is None:
            with contextlib.suppress(Exception):
                conn.close()
            return

        with ep.lock:
            for pc in ep.conns:
                if pc.conn is conn:
                    if not conn.is_alive():
                        with contextlib.suppress(Exception):
                            conn.close()
                        pc.in_use = False
                        pc.conn = None
                    else:
                        pc.in_use = False
                        pc.last_used = time.monotonic()
                    break
        ep.release()

    def cleanup_idle(self) -> None:
        """Close connections left unused for longer than the idle timeout."""
        with self._lock:
            pools = list(self._pools.values())
        now = time.monotonic()
        for ep in pools:
            with ep.lock:
                kept: list[_PooledConn] = []
                for pc in ep.conns:
                    if pc.conn is None:
                        continue
                    if not pc.in_use and now - pc.last_used > self.config.idle_timeout:
                        with contextlib.suppress(Exception):
                            pc.conn.close()
                        ep.release()
                        continue
                    kept.append(pc)
                ep.conns = kept

    def close(self) -> None:
        """Close every pooled connection and forget all endpoints."""
        with self._lock:
            for ep in self._pools.values():
                with ep.lock:
                    for pc in ep.conns:
                        if pc.conn is not None:
                            with contextlib.suppress(Exception):
                                pc.conn.close()
                    ep.conns = []
            self._pools = {}