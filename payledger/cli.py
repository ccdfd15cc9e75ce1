import click
from flask.cli import with_appcontext

from payledger.billing import ledger
from payledger.billing.sync import sync_subscription
from payledger.extensions import db
from payledger.models import Order, User
from payledger.models.credit_log import LOG_MANUAL_GRANT
from payledger.models.usage import BUCKET_ONE_TIME, BUCKET_SUBSCRIPTION


@click.group()
def credits():
    """Credit ledger operations."""


@credits.command("grant")
@click.option("--user-id", type=int, required=True)
@click.option("--amount", type=int, required=True)
@click.option("--bucket", type=click.Choice([BUCKET_ONE_TIME, BUCKET_SUBSCRIPTION]), default=BUCKET_ONE_TIME)
@click.option("--order-id", type=int, default=None, help="Order the grant settles (after a failed-grant alert)")
@click.option("--note", default=None)
@with_appcontext
def credits_grant(user_id, amount, bucket, order_id, note):
    if amount <= 0:
        raise click.ClickException("Amount must be positive")
    if db.session.get(User, user_id) is None:
        raise click.ClickException(f"User id {user_id} not found")
    if order_id is not None and db.session.get(Order, order_id) is None:
        raise click.ClickException(f"Order id {order_id} not found")

    entry = ledger.grant(
        user_id, amount, bucket=bucket, order_id=order_id, log_type=LOG_MANUAL_GRANT,
        notes=note or "Manual grant",
    )
    click.echo(
        f"Granted {amount} {bucket} credits to user {user_id} "
        f"(one_time={entry.one_time_balance_after} subscription={entry.subscription_balance_after})"
    )


@credits.command("verify")
@click.option("--user-id", type=int, required=True)
@with_appcontext
def credits_verify(user_id):
    """Replay the ledger and compare with the stored balances."""
    check = ledger.verify_ledger(user_id)
    click.echo(
        f"user {user_id}: one_time ledger={check.expected_one_time} stored={check.actual_one_time}; "
        f"subscription ledger={check.expected_subscription} stored={check.actual_subscription}"
    )
    if not check.ok:
        raise click.ClickException("Ledger drift detected")
    click.echo("OK")


@credits.command("allocate-yearly")
@with_appcontext
def credits_allocate_yearly():
    """Catch up every due yearly allocation (cron entry point)."""
    total = 0
    for user_id in ledger.users_with_yearly_allocations():
        entries = ledger.allocate_due_yearly_credits(user_id)
        if entries:
            total += 1
            click.echo(f"user {user_id}: allocated {len(entries)} month(s)")
    click.echo(f"Done: {total} user(s) updated")


@click.group()
def subscriptions():
    """Subscription mirror operations."""


@subscriptions.command("sync")
@click.argument("subscription_id")
@click.argument("customer_id")
@with_appcontext
def subscriptions_sync(subscription_id, customer_id):
    sub = sync_subscription(subscription_id, customer_id)
    click.echo(f"Synced {sub.stripe_subscription_id}: user={sub.user_id} plan={sub.plan_id} status={sub.status}")


def register_cli(app):
    app.cli.add_command(credits)
    app.cli.add_command(subscriptions)
