"""
Batch rent distribution with single-flight protection.

The coordinator is built once by the app factory and shared by the HTTP
handler and the CLI. Its guard decides whether a run may start: a process
lock for a single instance, a Redis lock when several instances share one
database.
"""
import logging
import threading
from dataclasses import dataclass, field

import redis
from redis.exceptions import LockNotOwnedError

from propledger.errors import DistributionInProgress
from propledger.extensions import db, unit_of_work
from propledger.models import DistributionRun
from propledger.models.rent import (
    RUN_COMPLETED, RUN_FAILED, RUN_PARTIAL, RUN_RUNNING, RUN_TYPE_MANUAL, RUN_TYPE_SCHEDULED,
)
from propledger.utils.money import ZERO, money, money_str, utcnow

logger = logging.getLogger(__name__)

SCHEDULED_TRIGGERS = (None, "CRON")


class LocalRunGuard:
    """Non-blocking process-wide lock."""

    def __init__(self):
        self._lock = threading.Lock()

    def acquire(self):
        return self._lock.acquire(blocking=False)

    def release(self):
        self._lock.release()

    @property
    def busy(self):
        return self._lock.locked()


class RedisRunGuard:
    """Distributed lock shared by every instance pointing at the same Redis."""

    def __init__(self, client, name="propledger:rent-distribution", timeout=3600):
        self.name = name
        self._lock = client.lock(name, timeout=timeout, blocking=False)

    def acquire(self):
        return bool(self._lock.acquire(blocking=False))

    def release(self):
        try:
            self._lock.release()
        except LockNotOwnedError:
            # run outlived the lock timeout; another instance may have taken it
            logger.warning("Distribution lock %s expired before release", self.name)

    @property
    def busy(self):
        return bool(self._lock.locked())


def build_run_guard(config):
    if config.get("REDIS_URL"):
        client = redis.Redis.from_url(config["REDIS_URL"])
        return RedisRunGuard(client, timeout=config.get("DISTRIBUTION_LOCK_TIMEOUT", 3600))
    return LocalRunGuard()


@dataclass
class RunSummary:
    run_id: int = None
    status: str = RUN_RUNNING
    dry_run: bool = False
    properties_processed: int = 0
    rent_payments_processed: int = 0
    holders_distributed: int = 0
    total_gross_distributed: object = ZERO
    total_interest_deducted: object = ZERO
    total_net_distributed: object = ZERO
    errors: list = field(default_factory=list)
    results: list = field(default_factory=list)

    def serialize(self):
        return {
            "run_id": self.run_id,
            "status": self.status,
            "dry_run": self.dry_run,
            "properties_processed": self.properties_processed,
            "rent_payments_processed": self.rent_payments_processed,
            "holders_distributed": self.holders_distributed,
            "total_gross_distributed": money_str(self.total_gross_distributed),
            "total_interest_deducted": money_str(self.total_interest_deducted),
            "total_net_distributed": money_str(self.total_net_distributed),
            "errors": list(self.errors),
            "results": [r.serialize() for r in self.results],
        }


class DistributionCoordinator:
    def __init__(self, engine, guard=None, clock=utcnow):
        self.engine = engine
        self.guard = guard or LocalRunGuard()
        self.clock = clock

    @property
    def is_running(self):
        return self.guard.busy

    def run_distribution(self, property_ids=None, dry_run=False, triggered_by=None):
        if not self.guard.acquire():
            raise DistributionInProgress()
        try:
            return self._run(property_ids, dry_run, triggered_by)
        finally:
            self.guard.release()

    def _run(self, property_ids, dry_run, triggered_by):
        summary = RunSummary(dry_run=dry_run)
        run = None
        if not dry_run:
            with unit_of_work():
                run = DistributionRun(
                    run_type=RUN_TYPE_SCHEDULED if triggered_by in SCHEDULED_TRIGGERS else RUN_TYPE_MANUAL,
                    triggered_by=triggered_by,
                    status=RUN_RUNNING,
                    started_at=self.clock(),
                    errors=[],
                )
                db.session.add(run)
            summary.run_id = run.id

        logger.info("Starting rent distribution run %s (dry_run=%s, trigger=%s)",
                    summary.run_id, dry_run, triggered_by)
        try:
            payments = self.engine.pending_payments(property_ids)
            properties = set()
            # remaining interest per position, carried across a dry run
            interest_owed = {} if dry_run else None
            for payment in payments:
                payment_id = payment.id
                try:
                    result = self.engine.process_rent_payment(
                        payment_id, dry_run=dry_run, interest_owed=interest_owed,
                    )
                except Exception as e:
                    logger.exception("Rent payment %s failed", payment_id)
                    summary.errors.append(f"RentPayment {payment_id}: {e}")
                    continue
                if result.skipped:
                    continue
                properties.add(result.property_id)
                summary.results.append(result)
                summary.rent_payments_processed += 1
                summary.holders_distributed += result.holders
                summary.total_gross_distributed += result.total_gross
                summary.total_interest_deducted += result.total_interest_deducted
                summary.total_net_distributed += result.total_net
            summary.properties_processed = len(properties)

            if not summary.errors:
                summary.status = RUN_COMPLETED
            elif summary.rent_payments_processed:
                summary.status = RUN_PARTIAL
            else:
                summary.status = RUN_FAILED
        except Exception as e:
            logger.exception("Rent distribution run %s aborted", summary.run_id)
            summary.status = RUN_FAILED
            summary.errors.append(str(e))
            if run is not None:
                self._finalize(run, summary)
            raise

        if run is not None:
            self._finalize(run, summary)
        logger.info(
            "Rent distribution run %s %s: %s payments, %s holders, net %s, %s errors",
            summary.run_id, summary.status, summary.rent_payments_processed,
            summary.holders_distributed, summary.total_net_distributed, len(summary.errors),
        )
        return summary

    def _finalize(self, run, summary):
        db.session.rollback()
        with unit_of_work():
            run = db.session.get(DistributionRun, run.id)
            run.status = summary.status
            run.properties_processed = summary.properties_processed
            run.rent_payments_processed = summary.rent_payments_processed
            run.holders_distributed = summary.holders_distributed
            run.total_gross_distributed = money(summary.total_gross_distributed)
            run.total_interest_deducted = money(summary.total_interest_deducted)
            run.total_net_distributed = money(summary.total_net_distributed)
            run.errors = list(summary.errors)
            run.completed_at = self.clock()

    def get_distribution_history(self, limit=20, offset=0):
        query = DistributionRun.query
        total = query.count()
        runs = (
            query.order_by(DistributionRun.started_at.desc(), DistributionRun.id.desc())
            .offset(offset).limit(limit).all()
        )
        return runs, total
