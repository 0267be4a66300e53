# Simple CLI for the signal relay
import asyncio
import json

import click

from app.main import ApplicationOrchestrator
from core.trading.models import OrderOverrides, SignalType
from core.utils.exceptions import IdentifierNotFoundError, InstrumentCatalogError, ValidationError
from services.position_sizing import calculate_for_accounts


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


async def _with_app(handler):
    app = ApplicationOrchestrator()
    try:
        return await handler(app)
    finally:
        await app.shutdown()


@click.group()
def cli():
    """Signal Relay CLI"""
    pass


@cli.command()
@click.argument("ticker")
@click.argument("price", type=float)
@click.option("--side", type=click.Choice(["BUY", "SELL"], case_sensitive=False), default="BUY")
@click.option("--account", "account_id", type=int, default=None, help="Single account id; all active accounts if omitted")
@click.option("--quantity", type=int, default=None, help="Manual quantity, skips position sizing")
@click.option("--product-type", default=None)
@click.option("--order-type", default=None)
@click.option("--wait", "wait_seconds", type=float, default=0.0, help="Seconds to wait for rebase results")
def place(ticker, price, side, account_id, quantity, product_type, order_type, wait_seconds):
    """Place a signal and print the placement summary"""
    payload = {"ticker": ticker, "price": price, "signal": side.upper(), "strategy": "cli"}
    overrides = OrderOverrides(quantity=quantity, product_type=product_type, order_type=order_type)

    async def handler(app: ApplicationOrchestrator):
        summary = await app.place(payload, account_id=account_id, overrides=overrides,
                                  wait_seconds=wait_seconds)
        _echo_json(summary.model_dump(mode="json"))
        if wait_seconds:
            _echo_json([r.model_dump(mode="json") for r in app.scheduler.results()])

    try:
        asyncio.run(_with_app(handler))
    except ValidationError as e:
        raise click.BadParameter(e.message, param_hint=e.field)


@cli.command()
@click.argument("price", type=float)
@click.option("--side", type=click.Choice(["BUY", "SELL"], case_sensitive=False), default="BUY")
def size(price, side):
    """Preview position sizing across active accounts"""

    async def handler(app: ApplicationOrchestrator):
        accounts = await app.account_provider.get_accounts(active_only=True)
        if not accounts:
            click.echo("No accounts configured")
            return
        calculations = calculate_for_accounts(price, accounts, SignalType(side.upper()))
        _echo_json([c.model_dump(mode="json") for c in calculations])

    try:
        asyncio.run(_with_app(handler))
    except ValidationError as e:
        raise click.BadParameter(e.message, param_hint=e.field)


@cli.command()
@click.argument("ticker")
@click.option("--search", is_flag=True, help="List matching tickers instead of resolving")
def resolve(ticker, search):
    """Resolve a ticker to its security id"""

    async def handler(app: ApplicationOrchestrator):
        if search:
            for symbol, security_id in await app.resolver.search(ticker):
                click.echo(f"{symbol}\t{security_id}")
            return
        security_id = await app.resolver.resolve(ticker)
        click.echo(f"{ticker.upper()} -> {security_id}")

    try:
        asyncio.run(_with_app(handler))
    except (IdentifierNotFoundError, InstrumentCatalogError) as e:
        raise click.ClickException(e.message)


@cli.command()
def accounts():
    """Show account configuration summary and validation errors"""

    async def handler(app: ApplicationOrchestrator):
        report = await app.startup()
        _echo_json(report)
        if not report["is_valid"]:
            raise click.ClickException("Account configuration is invalid")

    asyncio.run(_with_app(handler))


@cli.command()
@click.option("--account", "account_id", type=int, default=None, help="Single account id; all accounts if omitted")
def rebase(account_id):
    """Rebase protective legs of traded orders in bulk"""

    async def handler(app: ApplicationOrchestrator):
        if account_id is not None:
            policy = await app.account_provider.get_account(account_id)
            if policy is None:
                raise click.ClickException(f"Account {account_id} is not configured")
            results = {account_id: await app.scheduler.process_account_orders(policy)}
        else:
            policies = await app.account_provider.get_accounts(active_only=True)
            results = await app.scheduler.process_all_accounts(policies)
        _echo_json({
            str(acc): [r.model_dump(mode="json") for r in items] for acc, items in results.items()
        })

    asyncio.run(_with_app(handler))


if __name__ == "__main__":
    cli()
