from datetime import datetime

from sqlmodel import Session

from app.core.logging_setup import get_logger
from app.services.billing import BillingService, RenewalSummary

log = get_logger("billing.scheduler")

# Cycle renewals for every subscription whose cycle_end has passed; meant for a cron/worker tick


def run_billing_scheduler(session: Session, now: datetime | None = None) -> RenewalSummary:
    summary = BillingService(session).renew_due_subscriptions(now=now)
    log.info(
        "Renewal sweep: %d renewed, %d skipped, %d conflicts, %d failed",
        len(summary.renewed),
        len(summary.skipped),
        len(summary.conflicts),
        len(summary.failed),
    )
    for tenant_id, code in summary.failed.items():
        log.error("Renewal failed for tenant %s: %s", tenant_id, code)
    return summary
