"""Billing maintenance job.

Intended for cron (e.g. hourly) to expire trials and subscriptions of
schools that have stopped making requests, so listings and reports do not
show them as active. Requests already apply the same expiry lazily.
"""

from __future__ import annotations

from datetime import datetime, timezone

from schooldb.database import WriteSessionLocal
from schooldb.apps.subscriptions import services as subscription_services


def run() -> dict:
    """Execute the maintenance job and return a summary dict."""
    db = WriteSessionLocal()
    try:
        return subscription_services.expire_lapsed_subscriptions(
            db,
            now=datetime.now(timezone.utc),
        )
    finally:
        db.close()


if __name__ == "__main__":
    result = run()
    print("Billing maintenance completed:", result)
