"""``flask estimate`` maintenance commands."""
import logging

import click
from flask.cli import with_appcontext

from estimator import db
from estimator.models import ApprovalWorkflow, LineItem, Subwork, Work
from estimator.works.utils import recompute_item


@click.group("estimate")
def estimate_cli() -> None:
    """Estimate maintenance commands."""


@estimate_cli.command("recompute")
@click.argument("works_id")
@with_appcontext
def recompute_command(works_id: str) -> None:
    """Re-derive quantities and amounts for every item of a work."""
    work = db.session.get(Work, works_id)
    if work is None:
        raise click.ClickException(f"Work {works_id} not found")
    items = (LineItem.query.join(Subwork)
             .filter(Subwork.works_id == works_id)
             .order_by(LineItem.id).all())
    for it in items:
        recompute_item(it)
    db.session.commit()
    logging.info("recomputed %s items for work=%s", len(items), works_id)
    click.echo(f"Recomputed {len(items)} items; total {work.total_amount:.2f}")


@estimate_cli.command("history")
@click.argument("workflow_id", type=int)
@with_appcontext
def history_command(workflow_id: int) -> None:
    """Print the approval trail of a workflow."""
    wf = db.session.get(ApprovalWorkflow, workflow_id)
    if wf is None:
        raise click.ClickException(f"Workflow {workflow_id} not found")
    click.echo(f"{wf.works_id}: {wf.status} (level {wf.current_level})")
    for h in wf.history:
        line = f"{h.created_at:%Y-%m-%d %H:%M} L{h.level} {h.action:<10} {h.approver_id}"
        if h.comments:
            line += f" - {h.comments}"
        click.echo(line)
