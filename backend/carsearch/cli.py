# Overview: Flask CLI command groups for the lifecycle engine.

# backend/carsearch/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP=carsearch (PowerShell: $env:FLASK_APP="carsearch").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` once migrations are in play).
#
# Listings:
# - python -m flask listings show 12
# - python -m flask listings transition 12 contacted --reason "Sent intro email" [--path]
# - python -m flask listings stats
#
# Approvals:
# - python -m flask approvals list [--listing-id 12] [--action-type send_offer]
# - python -m flask approvals approve 3 --notes "ok"
# - python -m flask approvals reject 3 --notes "too high"
# - python -m flask approvals stats
# - python -m flask approvals expire
#   Persist expiry of every pending request past its deadline.
#
# Pricing / scoring:
# - python -m flask pricing cost 12 [--budget 18000] [--negotiated-price 14500] [--new-plates] [--no-registration]
# - python -m flask pricing bounds --listed 12000 [--budget 18000] [--market 12500]
# - python -m flask pricing counter --ours 10500 --theirs 12000 --exchanges 1 --walk-away 12000
# - python -m flask readiness score 12
#
# Failures print a FAIL line and exit with status 1.

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services.approval_service import ApprovalQueue
from .services.cost_service import CostService, RegistrationOptions
from .services.listing_service import ListingService
from .services.negotiation_service import initial_bounds, next_counter_offer
from .services.readiness_service import ReadinessScorer
from .services.state_machine import ListingStateMachine, allowed_next, state_description
from .validation import NotFoundError, ValidationError


def _fail(message: str):
    click.echo(f"FAIL {message}", err=True)
    raise click.exceptions.Exit(1)


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@click.group('listings')
def listings_group():
    """Listing inspection and lifecycle commands."""


@listings_group.command('show')
@click.argument('listing_id', type=int)
@with_appcontext
def show_listing(listing_id):
    listing = ListingService(db.session).get(listing_id)
    if listing is None:
        _fail(f"Listing {listing_id} not found")

    click.echo(f"#{listing.id} {listing.vehicle}")
    click.echo(f"  Source:    {listing.source} ({listing.source_url})")
    click.echo(f"  Price:     {'$' + format(listing.price, ',') if listing.price is not None else '-'}")
    click.echo(f"  Status:    {listing.status.value} ({state_description(listing.status)})")
    click.echo(f"  Info:      {listing.info_status.value}")
    click.echo(f"  Score:     {listing.score if listing.score is not None else '-'}")
    click.echo(f"  Readiness: {listing.readiness_score if listing.readiness_score is not None else '-'}")
    allowed = ", ".join(state.value for state in allowed_next(listing.status)) or "none (terminal)"
    click.echo(f"  Next:      {allowed}")


@listings_group.command('transition')
@click.argument('listing_id', type=int)
@click.argument('state')
@click.option('--reason', default=None, help='Reasoning recorded in the audit trail')
@click.option('--path', 'walk_path', is_flag=True, help='Walk the shortest path instead of a single edge')
@with_appcontext
def transition_listing(listing_id, state, reason, walk_path):
    machine = ListingStateMachine(db.session)
    apply = machine.transition_path if walk_path else machine.transition
    try:
        result = apply(listing_id, state, triggered_by="user", reasoning=reason)
    except ValidationError as e:
        _fail(str(e))

    if not result.ok:
        _fail(result.error)
    hops = " -> ".join(s.value for s in result.path)
    click.echo(f"PASS Listing {listing_id}: {result.from_state.value} -> {hops or result.to_state.value}")


@listings_group.command('stats')
@with_appcontext
def listing_stats():
    stats = ListingService(db.session).stats()
    click.echo(f"Total listings: {stats['total']}")
    for status, count in stats["by_status"].items():
        if count:
            click.echo(f"  {status:<20} {count}")
    for source, count in stats["by_source"].items():
        click.echo(f"  [{source}] {count}")


@click.group('approvals')
def approvals_group():
    """Human approval queue."""


@approvals_group.command('list')
@click.option('--listing-id', type=int, default=None)
@click.option('--action-type', default=None)
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_approvals(listing_id, action_type, limit):
    pending = ApprovalQueue(db.session).list_pending(listing_id=listing_id, action_type=action_type, limit=limit)
    if not pending:
        click.echo("No pending approvals.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Listing':<8} {'Action':<20} {'Description'}")
    click.echo("=" * 80)
    for item in pending:
        listing = item.listing_id if item.listing_id is not None else "-"
        click.echo(f"{item.id:<5} {listing!s:<8} {item.action_type:<20} {item.description}")
    click.echo("=" * 80 + "\n")


def _resolve(approval_id, notes, approve):
    queue = ApprovalQueue(db.session)
    result = queue.approve(approval_id, notes) if approve else queue.reject(approval_id, notes)
    if not result.ok:
        _fail(result.error)
    click.echo(f"PASS Approval #{approval_id} {result.status.value}")
    return result


@approvals_group.command('approve')
@click.argument('approval_id', type=int)
@click.option('--notes', default=None)
@with_appcontext
def approve_cli(approval_id, notes):
    """Approve and print the payload for the caller to execute."""
    result = _resolve(approval_id, notes, approve=True)
    click.echo(json.dumps(result.payload, indent=2, sort_keys=True))


@approvals_group.command('reject')
@click.argument('approval_id', type=int)
@click.option('--notes', default=None)
@with_appcontext
def reject_cli(approval_id, notes):
    _resolve(approval_id, notes, approve=False)


@approvals_group.command('stats')
@with_appcontext
def approval_stats():
    stats = ApprovalQueue(db.session).stats()
    for status in ("pending", "approved", "rejected", "expired"):
        click.echo(f"{status:<10} {stats[status]}")


@approvals_group.command('expire')
@with_appcontext
def expire_approvals():
    expired = ApprovalQueue(db.session).expire_stale()
    click.echo(f"PASS Expired {expired} stale approval(s).")


@click.group('pricing')
def pricing_group():
    """Cost and negotiation calculators."""


@pricing_group.command('cost')
@click.argument('listing_id', type=int)
@click.option('--budget', type=int, default=None, help='Defaults to BUYER_BUDGET')
@click.option('--negotiated-price', type=int, default=None)
@click.option('--new-plates', is_flag=True, help='Buy new plates instead of transferring')
@click.option('--no-registration', is_flag=True, help='Buyer registers separately')
@with_appcontext
def cost_cli(listing_id, budget, negotiated_price, new_plates, no_registration):
    service = CostService(db.session, tax_rate=current_app.config["TAX_RATE"])
    try:
        snapshot = service.compute_for_listing(
            listing_id,
            budget if budget is not None else current_app.config["BUYER_BUDGET"],
            negotiated_price=negotiated_price,
            registration=RegistrationOptions(include=not no_registration, plate_transfer=not new_plates),
        )
    except (ValidationError, NotFoundError) as e:
        _fail(str(e))

    click.echo(f"Effective price:  ${snapshot.effective_price:,}")
    for name, amount in snapshot.fees.items():
        if amount:
            click.echo(f"+ {name:<16}${amount:,}")
    click.echo(f"+ HST:            ${snapshot.tax_amount:,}")
    click.echo(f"+ Registration:   ${snapshot.registration_cost:,}")
    click.echo("-" * 30)
    click.echo(f"TOTAL:            ${snapshot.total_estimated_cost:,}")
    verdict = "Within budget" if snapshot.within_budget else "OVER BUDGET"
    click.echo(f"{verdict} (remaining ${snapshot.remaining_budget:,} of ${snapshot.budget:,})")


@pricing_group.command('bounds')
@click.option('--listed', type=int, required=True)
@click.option('--budget', type=int, default=None, help='Defaults to BUYER_BUDGET')
@click.option('--market', type=int, default=None, help='Market average for comparable vehicles')
@with_appcontext
def bounds_cli(listed, budget, market):
    try:
        bounds = initial_bounds(listed, budget if budget is not None else current_app.config["BUYER_BUDGET"], market)
    except ValidationError as e:
        _fail(str(e))
    click.echo(f"Target:    ${bounds.target_price:,}")
    click.echo(f"Walk-away: ${bounds.walk_away_price:,}")


@pricing_group.command('counter')
@click.option('--ours', type=int, required=True, help='Our last offer')
@click.option('--theirs', type=int, required=True, help="Seller's current offer")
@click.option('--exchanges', type=int, default=0, show_default=True)
@click.option('--walk-away', type=int, required=True)
def counter_cli(ours, theirs, exchanges, walk_away):
    try:
        counter = next_counter_offer(ours, theirs, exchanges, walk_away)
    except ValidationError as e:
        _fail(str(e))
    click.echo(f"Counter-offer: ${counter:,}")


@click.group('readiness')
def readiness_group():
    """Purchase-readiness scoring."""


@readiness_group.command('score')
@click.argument('listing_id', type=int)
@with_appcontext
def readiness_cli(listing_id):
    scorer = ReadinessScorer(db.session)
    try:
        signals = scorer.signals(listing_id)
        score = scorer.score(listing_id)
    except NotFoundError as e:
        _fail(str(e))

    click.echo(f"Readiness: {score}/100")
    for name, present in signals.as_dict().items():
        click.echo(f"  [{'x' if present else ' '}] {name}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(listings_group)
    app.cli.add_command(approvals_group)
    app.cli.add_command(pricing_group)
    app.cli.add_command(readiness_group)
