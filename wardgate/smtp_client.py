"""Sending email through an SMTP server with smtplib."""

from __future__ import annotations

import smtplib
import ssl
import time
from datetime import datetime
from email.utils import format_datetime

from wardgate.smtp_types import (
    AuthFailedError,
    Client,
    ConnectionConfig,
    Email,
    SendFailedError,
    SmtpConnectionError,
)


class SMTPClient(Client):
    """Stateless SMTP client: each send opens and closes its own session."""

    def __init__(self, config: ConnectionConfig) -> None:
        self.config = config

    def _tls_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if self.config.insecure_skip_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def send(self, email: Email) -> None:
        """Send ``email``; raise ValueError for missing addresses, SmtpError on failure."""
        from_addr = email.from_addr or self.config.from_addr
        if not from_addr:
            raise ValueError("from address required")
        recipients = [*email.to, *email.cc, *email.bcc]
        if not recipients:
            raise ValueError("at least one recipient required")

        message = self.build_message(from_addr, email)
        cfg = self.config
        try:
            if cfg.tls:
                server = smtplib.SMTP_SSL(cfg.host, cfg.port, context=self._tls_context())
            else:
                server = smtplib.SMTP(cfg.host, cfg.port)
        except OSError as exc:
            raise SmtpConnectionError(f"dial failed: {exc}") from exc

        with server:
            try:
                if not cfg.tls and cfg.start_tls:
                    server.starttls(context=self._tls_context())
            except (smtplib.SMTPException, OSError) as exc:
                raise SmtpConnectionError(f"STARTTLS failed: {exc}") from exc
            if cfg.username:
                try:
                    server.login(cfg.username, cfg.password)
                except (smtplib.SMTPException, OSError) as exc:
                    raise AuthFailedError(f"auth failed: {exc}") from exc
            try:
                server.sendmail(from_addr, recipients, message)
            except (smtplib.SMTPException, OSError) as exc:
                raise SendFailedError(f"send failed: {exc}") from exc

    def build_message(self, from_addr: str, email: Email) -> bytes:
        """Render headers and body, multipart/alternative when HTML is given."""
        lines = [f"From: {from_addr}", f"To: {', '.join(email.to)}"]
        if email.cc:
            lines.append(f"Cc: {', '.join(email.cc)}")
        if email.reply_to:
            lines.append(f"Reply-To: {email.reply_to}")
        lines.append(f"Subject: {email.subject}")
        lines.append(f"Date: {format_datetime(datetime.now().astimezone())}")
        lines.append("MIME-Version: 1.0")

        if email.html_body:
            boundary = f"boundary-wardgate-{time.time_ns()}"
            text = "\r\n".join(lines) + "\r\n"
            text += f'Content-Type: multipart/alternative; boundary="{boundary}"\r\n\r\n'
            for kind, content in (("plain", email.body), ("html", email.html_body)):
                text += f"--{boundary}\r\n"
                text += f'Content-Type: text/{kind}; charset="utf-8"\r\n\r\n'
                text += content + "\r\n"
            text += f"--{boundary}--\r\n"
        else:
            text = "\r\n".join(lines) + "\r\n"
            text += 'Content-Type: text/plain; charset="utf-8"\r\n\r\n'
            text += email.body
        return text.encode("utf-8")

    def close(self) -> None:
        """Nothing to release; sessions are per send."""