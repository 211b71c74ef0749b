from __future__ import annotations

import logging
import sys
from collections import Counter

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..dependencies.db import session_scope
from ..dependencies.identity import Actor
from ..services.analysis_jobs import AnalysisPreconditionError, JobNotFoundError, active_job_ids, run_advance_step
from ..services.llm_analysis import get_question_analyzer

logger = logging.getLogger(__name__)


def advance_active_jobs() -> Counter:
    """Advance every PENDING or RUNNING analysis job by one batch."""
    stats: Counter = Counter()
    with session_scope() as session:
        job_ids = active_job_ids(session)

    actor = Actor.system()
    for job_id in job_ids:
        with session_scope() as session:
            try:
                result = run_advance_step(
                    session,
                    job_id,
                    analyzer=get_question_analyzer(session),
                    actor=actor,
                )
            except (AnalysisPreconditionError, JobNotFoundError) as exc:
                logger.warning("Analysis job %s stopped: %s", job_id, exc)
                stats["stopped"] += 1
                continue
            except Exception:
                logger.exception("Analysis job %s crashed", job_id)
                stats["crashed"] += 1
                continue

        if result.busy:
            stats["busy"] += 1
        else:
            stats["advanced"] += 1
            stats["questions_processed"] += result.processed
            stats["questions_failed"] += result.failed
    return stats


def run_advance_job() -> None:
    stats = advance_active_jobs()
    if stats:
        logger.info("Advanced analysis jobs: %s", dict(stats))


def configure_scheduler() -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        run_advance_job,
        IntervalTrigger(seconds=settings.analysis.worker_interval_seconds),
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def main() -> None:
    logging.basicConfig(level=logging.INFO, handlers=[logging.StreamHandler(sys.stdout)])

    if len(sys.argv) > 1 and sys.argv[1] == "run-once":
        logger.info("Running analysis worker once")
        run_advance_job()
        return

    scheduler = configure_scheduler()
    logger.info("Starting analysis worker scheduler")
    scheduler.start()


if __name__ == "__main__":
    main()
