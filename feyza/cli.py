import click
import httpx
from flask import current_app
from flask.cli import with_appcontext
from postgrest.exceptions import APIError

from feyza.db import get_supabase
from feyza.lender.policies import default_policies
from feyza.trust.tier import calculate_simple_trust_tier

PAGE_SIZE = 200
CRON_JOBS = ("payment-reminders",)


@click.command("backfill-trust-tiers")
@with_appcontext
def backfill_trust_tiers():
    """Recalculate and store the trust tier of every user."""
    supabase = get_supabase()
    page = 0
    processed = 0
    while True:
        try:
            users = supabase.table("users") \
                .select("id") \
                .order("created_at") \
                .range(page * PAGE_SIZE, (page + 1) * PAGE_SIZE - 1) \
                .execute().data or []
        except APIError as e:
            raise click.ClickException(f"Failed to fetch users: {e.message}")
        if not users:
            break
        for user in users:
            result = calculate_simple_trust_tier(supabase, user["id"])
            click.echo(f"  {user['id']}: {result['tier']} ({result['vouch_count']} vouches)")
            processed += 1
        if len(users) < PAGE_SIZE:
            break
        page += 1
    click.echo(f"Done. Processed {processed} user(s).")


@click.command("backfill-lender-policies")
@with_appcontext
def backfill_lender_policies():
    """Create flat tier policies for individual lenders from their saved preferences."""
    supabase = get_supabase()
    try:
        prefs = supabase.table("lender_preferences") \
            .select("user_id,interest_rate,max_amount") \
            .execute().data or []
    except APIError as e:
        raise click.ClickException(f"Failed to fetch lender_preferences: {e.message}")

    prefs = [p for p in prefs if p.get("user_id")]
    if not prefs:
        click.echo("No individual lenders found. Nothing to backfill.")
        return

    created = skipped = 0
    for pref in prefs:
        rows = [
            dict(policy, lender_id=pref["user_id"])
            for policy in default_policies(
                interest_rate=float(pref.get("interest_rate") or 0) or 10,
                max_loan_amount=float(pref.get("max_amount") or 0) or 500,
            )
        ]
        try:
            supabase.table("lender_tier_policies") \
                .upsert(rows, on_conflict="lender_id,tier_id", ignore_duplicates=True) \
                .execute()
        except APIError as e:
            click.echo(f"  Failed for lender {pref['user_id']}: {e.message}")
            skipped += 1
            continue
        created += len(rows)
    click.echo(f"Done. Created {created} policy row(s). Skipped {skipped} lender(s) with errors.")


@click.command("trigger-cron")
@with_appcontext
@click.argument("job", type=click.Choice(CRON_JOBS))
@click.option("--base-url", default=None, help="Defaults to PUBLIC_BASE_URL.")
def trigger_cron(job, base_url):
    """Run a cron job on a deployed instance."""
    base_url = (base_url or current_app.config["PUBLIC_BASE_URL"]).rstrip("/")
    headers = {}
    secret = current_app.config.get("CRON_SECRET")
    if secret:
        headers["Authorization"] = f"Bearer {secret}"
    try:
        response = httpx.post(f"{base_url}/api/cron/{job}", headers=headers, timeout=60)
    except httpx.HTTPError as e:
        raise click.ClickException(f"Request failed: {e}")
    if response.status_code != 200:
        raise click.ClickException(f"Error {response.status_code}: {response.text}")
    click.echo(response.text)


def register_cli(app):
    app.cli.add_command(backfill_trust_tiers)
    app.cli.add_command(backfill_lender_policies)
    app.cli.add_command(trigger_cron)
