"""Payment reconciliation job.

Polls the payment gateway for orders still pending with a tracking id,
settling any whose notification was lost. Safe to run alongside live
notifications: settling an order is idempotent.
"""

from __future__ import annotations

import logging
import os
import time

from schooldb.database import WriteSessionLocal
from schooldb.apps.subscriptions import services as subscription_services
from schooldb.apps.subscriptions.gateway import get_gateway_client

logger = logging.getLogger(__name__)

RECONCILE_INTERVAL_SEC = int(os.getenv("PAYMENT_RECONCILE_INTERVAL_SEC", "300"))


def run() -> dict:
    db = WriteSessionLocal()
    try:
        return subscription_services.reconcile_pending_orders(db, gateway=get_gateway_client())
    finally:
        db.close()


def run_forever() -> None:
    while True:
        summary = run()
        logger.info("Payment reconciliation pass finished", extra=summary)
        time.sleep(RECONCILE_INTERVAL_SEC)


if __name__ == "__main__":
    if os.getenv("PAYMENT_RECONCILE_LOOP", "false").lower() in {"1", "true", "yes", "on"}:
        run_forever()
    else:
        print("Payment reconciliation completed:", run())
