"""Typer CLI for Entitlement-Engine."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="entitlement-engine",
    help="Entitlement-Engine: pass provisioning and Stripe reconciliation",
)
console = Console()


def _parse_instant(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def _with_db(coro_factory):
    from entitlement_engine.common.config import get_settings
    from entitlement_engine.common.logging import setup_logging
    from entitlement_engine.deps import get_db, get_gateway

    setup_logging(get_settings().log_level)
    db = get_db()
    await db.init()
    await db.create_all()
    try:
        return await coro_factory()
    finally:
        await get_gateway().aclose()
        await db.close()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the Entitlement-Engine API server."""
    import uvicorn
    from entitlement_engine.app import create_app

    console.print(f"[bold green]Starting Entitlement-Engine on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def reconcile(
    days: Optional[int] = typer.Option(None, help="Trailing window in days (default from settings)"),
    start: Optional[str] = typer.Option(None, help="Window start, ISO-8601"),
    end: Optional[str] = typer.Option(None, help="Window end, ISO-8601"),
    user: Optional[str] = typer.Option(None, help="Only this external user id"),
    tenant: Optional[str] = typer.Option(None, help="Only this tenant id"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report gaps without writing"),
):
    """Find and fill entitlements missing for successful Stripe payments."""
    from entitlement_engine.common.exceptions import PaymentProviderError
    from entitlement_engine.deps import get_scanner

    window_end = _parse_instant(end)
    window_start = _parse_instant(start)
    if window_start is None and days is not None:
        window_end = window_end or datetime.now(timezone.utc)
        window_start = window_end - timedelta(days=days)

    try:
        report = asyncio.run(_with_db(lambda: get_scanner().scan(
            window_start, window_end,
            user_external_id=user, tenant_id=tenant, dry_run=dry_run,
        )))
    except (PaymentProviderError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    table = Table(title="Dry run" if report.dry_run else "Reconciliation")
    table.add_column("Metric")
    table.add_column("Count", justify="right")
    for label, value in (
        ("examined", report.examined),
        ("eligible", report.eligible),
        ("already provisioned", report.already_provisioned),
        ("gaps found", report.gaps_found),
        ("created", report.created),
        ("raced", report.raced),
        ("failed", report.failed),
    ):
        table.add_row(label, str(value))
    console.print(table)

    for failure in report.failures:
        console.print(f"[red]{failure.transaction_id}[/red] {failure.code}: {failure.reason}")
    if report.dry_run:
        for gap in report.gaps:
            console.print(f"[yellow]missing[/yellow] {gap}")
    if report.failures:
        raise typer.Exit(1)


@app.command()
def replay(
    transaction_id: str = typer.Argument(..., help="Stripe checkout session id"),
):
    """Provision a single checkout session fetched from Stripe."""
    from entitlement_engine.common.exceptions import EngineError
    from entitlement_engine.deps import get_db, get_gateway, get_provisioning_service
    from entitlement_engine.entitlements.writer import ProvisioningOrigin

    async def _replay():
        transaction = await get_gateway().get_transaction(transaction_id)
        svc = get_provisioning_service()
        reason = svc.ineligibility_reason(transaction)
        if reason is not None:
            return None, reason
        return await svc.run(get_db(), transaction, ProvisioningOrigin.REPLAY), None

    try:
        result, reason = asyncio.run(_with_db(_replay))
    except EngineError as e:
        console.print(f"[bold red]{e.code}[/bold red] — {e.message}")
        raise typer.Exit(1)

    if result is None:
        console.print(f"[yellow]IGNORED[/yellow] — {reason}")
        return
    console.print(f"[bold green]{result.status.value.upper()}[/bold green] — {result.entitlement_id}")
    console.print(f"  Kind: {result.kind}  Expires: {result.expires_at}")


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check Entitlement-Engine server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] — v{data['version']}")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
