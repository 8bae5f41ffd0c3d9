# walletledger/scheduler.py
"""
Sweep over many wallets with a bounded worker pool.

Each wallet pass is atomic. Progress is stored in `wallet_job` rows, so an
interrupted sweep restarted with the same sweep id skips finished wallets.
"""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

import pytz
from sqlmodel import Session, select

from walletledger.db.models import WalletJob
from walletledger.db.session import get_session
from walletledger.errors import LedgerError
from walletledger.service import LedgerService

logger = logging.getLogger(__name__)

DONE = "done"
FAILED = "failed"
PENDING = "pending"
PROCESSING = "processing"


@dataclass
class SweepReport:
    sweep_id: str
    done: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)


class WalletSweep:
    """Runs LedgerService.process_wallet for a list of wallets."""

    def __init__(
        self,
        service: LedgerService,
        session_factory: Callable[[], Session] = get_session,
        max_workers: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.service = service
        self.session_factory = session_factory
        self.max_workers = max_workers or service.settings.max_workers
        self.delay_seconds = (
            service.settings.sweep_delay_seconds if delay_seconds is None else delay_seconds
        )
        self.sleep = sleep

    def run(
        self,
        wallet_ids: Iterable[str],
        sweep_id: Optional[str] = None,
        **pass_kwargs,
    ) -> SweepReport:
        """
        Process every wallet not yet done in this sweep.

        Args:
            wallet_ids: Wallets to process (duplicates ignored)
            sweep_id: Reuse to resume an interrupted sweep
            pass_kwargs: Forwarded to LedgerService.process_wallet

        Returns:
            SweepReport (done, failed with error message, skipped as already done)
        """
        report = SweepReport(sweep_id=sweep_id or str(uuid.uuid4()))
        pending = self._register(report, list(dict.fromkeys(wallet_ids)))

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                pool.submit(self._run_one, report.sweep_id, wallet_id, pass_kwargs): wallet_id
                for wallet_id in pending
            }
            for future in as_completed(futures):
                wallet_id = futures[future]
                error = future.result()
                if error is None:
                    report.done.append(wallet_id)
                else:
                    report.failed[wallet_id] = error

        report.done.sort()
        logger.info(
            "Sweep %s finished: %d done, %d failed, %d skipped",
            report.sweep_id, len(report.done), len(report.failed), len(report.skipped),
        )
        return report

    def _register(self, report: SweepReport, wallet_ids: List[str]) -> List[str]:
        """Create missing job rows; return wallets still to process."""
        with self.session_factory() as session:
            jobs = {
                job.wallet_id: job
                for job in session.exec(
                    select(WalletJob).where(WalletJob.sweep_id == report.sweep_id)
                ).all()
            }
            pending = []
            for wallet_id in wallet_ids:
                job = jobs.get(wallet_id)
                if job is not None and job.status == DONE:
                    report.skipped.append(wallet_id)
                    continue
                if job is None:
                    session.add(WalletJob(sweep_id=report.sweep_id, wallet_id=wallet_id))
                pending.append(wallet_id)
            session.commit()
        return pending

    def _run_one(self, sweep_id: str, wallet_id: str, pass_kwargs: dict) -> Optional[str]:
        """Process one wallet; returns the error message or None."""
        with self.session_factory() as session:
            self._set_status(session, sweep_id, wallet_id, PROCESSING, attempt=True)
            error = None
            try:
                self.service.process_wallet(session, wallet_id, **pass_kwargs)
            except LedgerError as e:
                logger.warning("Wallet %s failed in sweep %s: %s", wallet_id, sweep_id, e)
                error = str(e)
            except Exception as e:
                logger.exception("Wallet %s crashed in sweep %s", wallet_id, sweep_id)
                error = f"{type(e).__name__}: {e}"
            self._set_status(session, sweep_id, wallet_id, FAILED if error else DONE, error)

        if self.delay_seconds > 0:
            self.sleep(self.delay_seconds)
        return error

    @staticmethod
    def _set_status(
        session: Session,
        sweep_id: str,
        wallet_id: str,
        status: str,
        error: Optional[str] = None,
        attempt: bool = False,
    ) -> None:
        job = session.exec(
            select(WalletJob).where(
                WalletJob.sweep_id == sweep_id, WalletJob.wallet_id == wallet_id
            )
        ).one()
        job.status = status
        job.error = error
        if attempt:
            job.attempts += 1
        job.updated_at = datetime.now(pytz.UTC)
        session.add(job)
        session.commit()
