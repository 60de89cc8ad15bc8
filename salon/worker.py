"""
ARQ Background Worker
Retries invoices that could not be issued when their settlement was committed
"""

import logging
from datetime import datetime
from typing import Optional

from arq.connections import RedisSettings
from arq.cron import cron
from sqlalchemy.orm import Session

# Import all model files to ensure all models are registered
from . import models  # noqa: F401
from . import models_invoice  # noqa: F401
from .config import REDIS_URL, WORKER_JOB_TIMEOUT_SECONDS, WORKER_MAX_JOBS
from .database import SessionLocal
from .domain.settlements.repository import SettlementRepository
from .domain.settlements.service import record_invoice_failure, record_invoice_success
from .services.invoice_service import InvoiceProvider
from .shared.errors import InvoicingError

logger = logging.getLogger(__name__)


def get_redis_settings() -> RedisSettings:
    """Redis connection for the worker; rediss:// URLs enable TLS"""
    settings = RedisSettings.from_dsn(REDIS_URL)
    settings.conn_timeout = 15
    return settings


async def retry_pending_invoices(
    db: Session, provider: InvoiceProvider, now: Optional[datetime] = None
) -> dict:
    """
    Re-submit pending invoices whose retry time has come.

    Each invoice is committed on its own so one provider failure does not
    hold back the rest.
    """
    now = now or datetime.now()
    due = SettlementRepository.get_due_invoices(db, now)

    issued = 0
    deferred = 0
    failed = 0
    for invoice in due:
        invoice.attempts += 1
        try:
            result = await provider.create_invoice(invoice.retry_payload or {})
            provider_invoice_id = result["invoice_id"]
        except Exception as e:
            if not isinstance(e, InvoicingError):
                logger.error(f"❌ Unexpected invoicing failure for invoice {invoice.id}: {e}", exc_info=True)
            record_invoice_failure(invoice, invoice.payment, str(e), now)
            if invoice.status == "fallida":
                failed += 1
                logger.error(
                    f"❌ Invoice {invoice.id} for payment {invoice.payment_id} failed after "
                    f"{invoice.attempts} attempts: {e}"
                )
            else:
                deferred += 1
                logger.warning(f"⚠️ Invoice {invoice.id} retry {invoice.attempts} failed: {e}")
        else:
            record_invoice_success(invoice, invoice.payment, provider_invoice_id, now)
            issued += 1
        db.commit()

    if due:
        logger.info(f"Invoice retry complete: {issued} issued, {deferred} deferred, {failed} failed")
    return {"processed": len(due), "issued": issued, "deferred": deferred, "failed": failed}


async def retry_pending_invoices_task(ctx):
    """Cron job that finishes invoices left pending by settlements"""
    db = SessionLocal()
    try:
        return await retry_pending_invoices(db, InvoiceProvider())
    except Exception as e:
        logger.error(f"❌ Invoice retry failed: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()


class WorkerSettings:
    """ARQ Worker Settings"""

    functions = [retry_pending_invoices_task]
    redis_settings = get_redis_settings()

    max_jobs = WORKER_MAX_JOBS
    job_timeout = WORKER_JOB_TIMEOUT_SECONDS

    # Every minute; each invoice carries its own next_retry_at
    cron_jobs = [cron(retry_pending_invoices_task, minute=set(range(60)), second=0)]
