# Overview: Fire-and-forget customer notifications.

from __future__ import annotations

from flask import current_app


def log_order_notifier(user_id: int, order_id: int) -> None:
    current_app.logger.info("Order confirmation for order %s queued to user %s", order_id, user_id)


def send_order_confirmation(user_id: int, order_id: int) -> bool:
    """
    Hand the confirmation to the configured notifier.

    Called after the order commits. A failing notifier is logged and never
    touches the order. Returns True if the notifier accepted it.
    """
    notifier = current_app.extensions.get("order_notifier", log_order_notifier)
    try:
        notifier(user_id, order_id)
    except Exception:
        current_app.logger.exception("Order confirmation notification failed for order %s", order_id)
        return False
    return True
