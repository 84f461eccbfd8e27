"""Vigil CLI -- operator entry point for the security engine."""

import json
import logging
import time

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from vigil import __version__
from vigil.errors import VigilError

console = Console()


def _engine(ctx: click.Context):
    from vigil.engine import SecurityEngine

    if ctx.obj.get("engine") is None:
        ctx.obj["engine"] = SecurityEngine.from_config(ctx.obj.get("config"))
    return ctx.obj["engine"]


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", default=None, help="YAML config file (default: $VIGIL_CONFIG)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config: str | None, verbose: bool):
    """Vigil -- security monitoring and rate limiting.

    Check request budgets, inspect violations and the audit trail, and run
    the daily maintenance sweep.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# ── Rate limits ──────────────────────────────────────────────────────


@main.command()
@click.argument("user_id")
@click.argument("operation")
@click.option("--role", default="default", type=click.Choice(["default", "guard", "company", "admin"]))
@click.pass_context
def check(ctx: click.Context, user_id: str, operation: str, role: str):
    """Consume one request of OPERATION for USER_ID."""
    engine = _engine(ctx)
    try:
        decision = engine.rate_limiter.check_and_consume(user_id, operation, role)
    except VigilError as e:
        console.print(f"[red]Denied:[/] {e}")
        raise SystemExit(1)
    console.print(
        f"[green]Allowed[/] {operation} for {user_id} "
        f"({decision.count}/{decision.effective_limit}, base {decision.base_limit})"
    )


@main.command()
@click.argument("user_id", required=False)
@click.pass_context
def violations(ctx: click.Context, user_id: str | None):
    """Show violation records (all users, or USER_ID's history)."""
    engine = _engine(ctx)

    if user_id:
        record = engine.violations.get_violations(user_id)
        console.print(
            Panel(
                f"Count: {record.count}\nSeverity: {record.severity.value}\n"
                f"By type: {record.type_counts or '-'}",
                title=f"Violations for {user_id}",
            )
        )
        table = Table(title="History (newest last)")
        table.add_column("Timestamp", style="dim")
        table.add_column("Type", style="cyan")
        table.add_column("Metadata")
        for entry in record.history[-20:]:
            table.add_row(entry.timestamp, entry.type, json.dumps(entry.metadata))
        console.print(table)
        return

    records = engine.violations.list_records()
    if not records:
        console.print("[yellow]No violations recorded.[/]")
        return
    table = Table(title=f"Violations ({len(records)} users)")
    table.add_column("User", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Severity")
    table.add_column("Updated", style="dim")
    for r in sorted(records, key=lambda r: r.count, reverse=True):
        table.add_row(r.user_id, str(r.count), r.severity.value, r.updated_at)
    console.print(table)


# ── Assessment & audit ───────────────────────────────────────────────


@main.command()
@click.option("--admin-id", required=True, help="Admin account running the assessment")
@click.pass_context
def assess(ctx: click.Context, admin_id: str):
    """Run a manual security assessment."""
    engine = _engine(ctx)
    try:
        results = engine.trigger_security_assessment(engine.users.get_user(admin_id))
    except VigilError as e:
        console.print(f"[red]{e}[/]")
        raise SystemExit(1)

    table = Table(title=f"Security Assessment ({results.timestamp})")
    table.add_column("Check", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Status")
    for name, c in results.checks.items():
        style = "green" if c.status == "passed" else "yellow"
        table.add_row(name, str(c.count), f"[{style}]{c.status}[/]")
    console.print(table)
    colour = "green" if results.overall_status == "secure" else "yellow"
    console.print(f"\nOverall: [{colour}]{results.overall_status}[/]")


@main.command()
@click.option("--user", "user_id", default=None)
@click.option("--action", default=None)
@click.option("--resource-type", default=None)
@click.option("--limit", default=50, show_default=True)
@click.option("--export", "fmt", default=None, type=click.Choice(["json", "csv"]))
@click.pass_context
def audit(ctx: click.Context, user_id, action, resource_type, limit: int, fmt):
    """List (or export) audit log entries, newest first."""
    engine = _engine(ctx)
    filters = dict(user_id=user_id, action=action, resource_type=resource_type)

    if fmt:
        click.echo(engine.audit.export_events(fmt, limit=limit, **filters), nl=False)
        return

    entries = engine.audit.get_events(limit=limit, **filters)
    if not entries:
        console.print("[yellow]No audit entries found.[/]")
        return
    table = Table(title=f"Audit Log ({len(entries)} entries)")
    table.add_column("Timestamp", style="dim")
    table.add_column("User", style="cyan")
    table.add_column("Action")
    table.add_column("Resource")
    table.add_column("Risk")
    for e in entries:
        table.add_row(e.timestamp, e.user_id, e.action, f"{e.resource_type}/{e.resource_id}", e.risk_level)
    console.print(table)


# ── Maintenance ──────────────────────────────────────────────────────


@main.command()
@click.pass_context
def sweep(ctx: click.Context):
    """Run the daily maintenance sweep once, now."""
    engine = _engine(ctx)
    summary = engine.sweeper.run_all()

    console.print(f"  Rate-limit windows removed: {summary.rate_limits_removed}")
    console.print(f"  Audit entries removed:      {summary.audit_entries_removed}")
    console.print(f"  Violation journal removed:  {summary.violation_events_removed}")
    if summary.report:
        r = summary.report
        console.print(
            f"  Report {r.date}: {r.threats_detected} threats, "
            f"{r.violations_recorded} violations, {r.certificate_alerts} certificate alerts"
        )
    if summary.failed_jobs:
        console.print(f"[red]Failed jobs:[/] {', '.join(summary.failed_jobs)}")
        raise SystemExit(1)
    console.print("\n[green]Maintenance complete.[/]")


@main.command()
@click.pass_context
def schedule(ctx: click.Context):
    """Run the maintenance sweep daily until interrupted."""
    engine = _engine(ctx)
    scheduler = engine.scheduler()
    scheduler.start()
    console.print(f"Next run: [cyan]{scheduler.next_run().isoformat()}[/] (Ctrl-C to stop)")
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\nStopping...")
    finally:
        scheduler.stop()


# ── Data-subject requests ────────────────────────────────────────────


@main.command("gdpr-overdue")
@click.pass_context
def gdpr_overdue(ctx: click.Context):
    """List accepted GDPR requests still open past their deadline."""
    engine = _engine(ctx)
    late = engine.gdpr.overdue()
    if not late:
        console.print("[green]No overdue GDPR requests.[/]")
        return
    table = Table(title=f"Overdue GDPR requests ({len(late)})")
    table.add_column("Request", style="cyan")
    table.add_column("User")
    table.add_column("Deadline", style="red")
    for d in sorted(late, key=lambda d: d.deadline):
        table.add_row(d.request_id, d.user_id, d.deadline)
    console.print(table)


@main.command("gdpr-complete")
@click.argument("request_id")
@click.option("--by", "actor_id", default="cli", show_default=True, help="Operator closing the request")
@click.pass_context
def gdpr_complete(ctx: click.Context, request_id: str, actor_id: str):
    """Mark the GDPR request REQUEST_ID as answered."""
    engine = _engine(ctx)
    if engine.complete_gdpr_request(request_id, actor_id) is None:
        console.print(f"[red]No accepted GDPR request:[/] {request_id}")
        raise SystemExit(1)
    console.print(f"  [green]Completed[/] {request_id}")


# ── Accounts ─────────────────────────────────────────────────────────


@main.command("add-user")
@click.argument("user_id")
@click.option("--role", default="default", type=click.Choice(["default", "guard", "company", "admin"]))
@click.option("--email", default="")
@click.pass_context
def add_user(ctx: click.Context, user_id: str, role: str, email: str):
    """Create or replace an account."""
    from vigil.auth.models import User

    engine = _engine(ctx)
    user = engine.users.save_user(User(id=user_id, username=user_id, email=email, role=role))
    console.print(f"  Saved {user.id} ({user.role.value})")


@main.command("create-key")
@click.argument("user_id")
@click.option("--name", default="cli", help="Label for the key")
@click.pass_context
def create_key(ctx: click.Context, user_id: str, name: str):
    """Issue an API key for USER_ID. The raw key is shown once."""
    engine = _engine(ctx)
    if engine.users.get_user(user_id) is None:
        console.print(f"[red]Unknown user:[/] {user_id}")
        raise SystemExit(1)
    api_key, raw = engine.users.create_api_key(user_id, name)
    console.print(f"  Key {api_key.id} ({api_key.prefix}...) expires {api_key.expires_at}")
    console.print(f"  [bold]{raw}[/]")


@main.command()
@click.pass_context
def users(ctx: click.Context):
    """List accounts."""
    engine = _engine(ctx)
    accounts = engine.users.list_users()
    if not accounts:
        console.print("[yellow]No accounts.[/]")
        return
    table = Table(title=f"Accounts ({len(accounts)})")
    table.add_column("User", style="cyan")
    table.add_column("Role")
    table.add_column("Status")
    table.add_column("Keys", justify="right")
    for u in sorted(accounts, key=lambda u: u.id):
        status_text = f"[red]suspended[/] ({u.suspension_reason})" if u.suspended else "[green]active[/]"
        table.add_row(u.id, u.role.value, status_text, str(len(engine.users.list_api_keys(u.id))))
    console.print(table)


@main.command("set-role")
@click.argument("user_id")
@click.argument("role", type=click.Choice(["default", "guard", "company", "admin"]))
@click.pass_context
def set_role(ctx: click.Context, user_id: str, role: str):
    """Change USER_ID's role."""
    from vigil.auth.models import Role

    engine = _engine(ctx)
    if engine.users.update_user_role(user_id, Role(role)) is None:
        console.print(f"[red]Unknown user:[/] {user_id}")
        raise SystemExit(1)
    console.print(f"  {user_id} is now {role}")


@main.command()
@click.argument("user_id")
@click.pass_context
def reinstate(ctx: click.Context, user_id: str):
    """Lift a suspension on USER_ID."""
    engine = _engine(ctx)
    if engine.users.reinstate_user(user_id) is None:
        console.print(f"[red]Unknown user:[/] {user_id}")
        raise SystemExit(1)
    console.print(f"  [green]Reinstated[/] {user_id}")


@main.command("revoke-key")
@click.argument("key_id")
@click.pass_context
def revoke_key(ctx: click.Context, key_id: str):
    """Delete the API key KEY_ID."""
    engine = _engine(ctx)
    if not engine.users.delete_api_key(key_id):
        console.print(f"[red]Unknown key:[/] {key_id}")
        raise SystemExit(1)
    console.print(f"  Deleted key {key_id}")


@main.command("revoke-cert")
@click.argument("certificate_type", type=click.Choice(["WPBR", "VCA", "BHV", "EHBO", "SVPB"]))
@click.argument("certificate_number")
@click.option("--reason", default="", help="Why the certificate was revoked")
@click.pass_context
def revoke_cert(ctx: click.Context, certificate_type: str, certificate_number: str, reason: str):
    """Add a certificate to the revocation list."""
    engine = _engine(ctx)
    engine.certificates.revoke(certificate_type, certificate_number, reason)
    console.print(f"  Revoked {certificate_type} {certificate_number}")


if __name__ == "__main__":
    main()
