# Overview: Periodic sweeps that expire time-boxed grants and warn holders before they lapse.

"""
Grant Expiry Sweeps

Two independent passes over every time-boxed approval workflow:

- expire_grants: APPROVED grants with expires_at <= now become EXPIRED in
  one transaction; afterwards each requester is notified
- warn_expiring_grants: APPROVED grants expiring within
  EXPIRY_WARNING_SECONDS get an "expiring soon" notification; nothing is
  mutated

Each notification is isolated: one failure is logged and counted, the rest
of the sweep carries on. The status flip itself never depends on delivery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..time_utils import utcnow
from .approval_workflows import time_boxed_workflows
from .concurrency import run_in_transaction


logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    processed: int = 0
    notified: int = 0
    failed: int = 0
    request_ids: list[int] = field(default_factory=list)

    def merge(self, other: "SweepResult") -> "SweepResult":
        return SweepResult(
            processed=self.processed + other.processed,
            notified=self.notified + other.notified,
            failed=self.failed + other.failed,
            request_ids=self.request_ids + other.request_ids,
        )

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "notified": self.notified,
            "failed": self.failed,
            "request_ids": list(self.request_ids),
        }


def _notify_each(rows, send, label: str) -> SweepResult:
    result = SweepResult(processed=len(rows), request_ids=[row.id for row in rows])
    for row in rows:
        try:
            send(row)
        except Exception:
            db.session.rollback()
            result.failed += 1
            logger.exception(f"Failed to send {label} notification for request {row.id}")
        else:
            result.notified += 1
    return result


def expire_grants(now: datetime | None = None) -> SweepResult:
    """Expire every due time-boxed grant, then notify the requesters."""
    now = now or utcnow()
    total = SweepResult()

    for workflow in time_boxed_workflows():
        expired = run_in_transaction(lambda hooks, wf=workflow: wf.expire_due(now))
        if not expired:
            continue
        logger.info(f"Expired {len(expired)} {workflow.kind} grant(s)")
        total = total.merge(_notify_each(expired, workflow.notify_expired, "expiry"))

    return total


def warn_expiring_grants(now: datetime | None = None) -> SweepResult:
    """Notify holders of grants that expire within EXPIRY_WARNING_SECONDS."""
    now = now or utcnow()
    window = current_app.config.get("EXPIRY_WARNING_SECONDS", 60)
    total = SweepResult()

    for workflow in time_boxed_workflows():
        expiring = workflow.expiring_within(now, window)
        if not expiring:
            continue
        total = total.merge(
            _notify_each(expiring, lambda row, wf=workflow: wf.notify_expiring(row, now), "expiring")
        )

    return total


def run_sweep(now: datetime | None = None) -> dict[str, SweepResult]:
    now = now or utcnow()
    results = {
        "expired": expire_grants(now),
        "expiring": warn_expiring_grants(now),
    }
    if results["expired"].processed or results["expiring"].processed:
        logger.info(
            f"Expiry sweep: {results['expired'].processed} expired, "
            f"{results['expiring'].processed} expiring soon, "
            f"{results['expired'].failed + results['expiring'].failed} notification failure(s)"
        )
    return results
