"""Push transports: pywebpush delivery and a dry-run recorder."""

from push_dispatch.transport.webpush import DryRunTransport, WebPushTransport

__all__ = ["DryRunTransport", "WebPushTransport"]
