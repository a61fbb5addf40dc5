"""Policy, rate limiting, filtering, and WSGI gateways for HTTP, IMAP and SMTP access by agents."""

__version__ = "0.1.0"

__all__ = [
    "filter",
    "imap_client",
    "imap_handler",
    "imap_pool",
    "notify",
    "policy",
    "proxy",
    "ratelimit",
    "smtp_client",
    "smtp_handler",
    "smtp_types",
]