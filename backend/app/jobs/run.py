"""CLI entry point for job execution."""

import sys
from uuid import UUID

import click

from app.core.logging import get_logger, setup_logging
from app.db.session import SessionLocal
from app.services.completion_events import fetch_pending_events, mark_events_dispatched
from app.services.statistics_service import (
    apply_completion,
    backfill_pending_aggregates,
    rebuild_case_statistics,
    rebuild_user_statistics,
)

logger = get_logger(__name__)

JOB_KEYS = (
    "backfill_aggregates",
    "drain_completion_events",
    "rebuild_case_statistics",
    "rebuild_user_statistics",
)


def drain_completion_events(db, limit: int) -> int:
    """Fold each pending completion event into statistics, then mark it dispatched."""
    events = fetch_pending_events(db, limit=limit)
    for event in events:
        apply_completion(db, event.session_id)
    return mark_events_dispatched(db, events)


@click.command()
@click.argument("job_key", type=click.Choice(JOB_KEYS))
@click.option("--limit", default=500, show_default=True, help="Maximum sessions or events to process.")
@click.option("--case-id", default=None, help="Case to rebuild (rebuild_case_statistics).")
@click.option("--user-id", default=None, help="User to rebuild (rebuild_user_statistics).")
def run(job_key: str, limit: int, case_id: str | None, user_id: str | None):
    """
    Run a maintenance job.

    Example:
        python -m app.jobs.run backfill_aggregates
    """
    setup_logging()
    db = SessionLocal()
    try:
        if job_key == "backfill_aggregates":
            result = backfill_pending_aggregates(db, limit=limit)
            click.echo(f"Job completed: {result} sessions aggregated")
        elif job_key == "drain_completion_events":
            result = drain_completion_events(db, limit)
            click.echo(f"Job completed: {result} events dispatched")
        elif job_key == "rebuild_case_statistics":
            if not case_id:
                click.echo("rebuild_case_statistics requires --case-id", err=True)
                sys.exit(1)
            result = rebuild_case_statistics(db, UUID(case_id))
            click.echo(f"Job completed: {result}")
        elif job_key == "rebuild_user_statistics":
            if not user_id:
                click.echo("rebuild_user_statistics requires --user-id", err=True)
                sys.exit(1)
            result = rebuild_user_statistics(db, UUID(user_id))
            click.echo(f"Job completed: {result}")
    except Exception as e:
        logger.error(f"Job failed: {e}", exc_info=True)
        click.echo(f"Job failed: {e}", err=True)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    run()
