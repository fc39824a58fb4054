"""push-dispatch - batch web push notification dispatch.

This package stores browser push subscriptions per device, fans a
notification out to many devices concurrently and reconciles subscription
state when push services report them expired or gone.
"""

from push_dispatch.__main__ import main

__all__ = ["main"]
