"""
Console entry point.

    pantry                 sign in if needed, then show the dashboard
    pantry login           force a fresh sign-in
    pantry logout          end the stored session and clear caches
    pantry list            show the shopping list (cached for an hour)
    pantry bulk ITEM PRICE QTY PACK_PRICE MONTHLY_USAGE [SHELF_LIFE_MONTHS]
"""

import typer

from . import api
from .app import PantryApp
from .bulk_buy import calculate_savings, save_calculation
from .cache import read_through
from .config import log, setup_logging
from .constants import CLIENT_VERSION, KEY_MY_LIST
from .errors import PantryError, ValidationError
from .views import ViewState

WAIT_TIMEOUT_SEC = 15 * 60

app = typer.Typer(
    add_completion=False,
    help="Pantry Tracker client: sign in, follow account setup, read the dashboard.",
)


def _start():
    setup_logging(console=False)
    typer.echo("Pantry Tracker client v" + CLIENT_VERSION)
    return PantryApp()


def _print_screen(screen):
    if screen.message:
        if screen.state is ViewState.ERROR:
            typer.secho(f"! {screen.message}", err=True, fg=typer.colors.RED)
        else:
            typer.echo(f"* {screen.message}")
    for field, msg in screen.field_errors.items():
        typer.secho(f"  {field}: {msg}", err=True, fg=typer.colors.RED)


def _wait(pantry, screen):
    pantry.run_until(lambda: not screen.busy, timeout_sec=WAIT_TIMEOUT_SEC)


def _login(pantry):
    routes = []
    screen = pantry.login_screen(navigate=routes.append)
    screen.mount()
    if screen.busy:
        typer.echo(screen.message)
        _wait(pantry, screen)
        _print_screen(screen)

    try:
        for _ in range(3):
            email = screen.email or typer.prompt("Email").strip()
            password = typer.prompt("Password", hide_input=True)
            if not screen.submit(email, password):
                _print_screen(screen)
                screen.email = ""
                continue
            _wait(pantry, screen)
            _print_screen(screen)
            if pantry.session.is_active:
                return True
            if routes and routes[-1].startswith("/signup"):
                typer.echo("Verify your email address, then run `pantry login` again.")
                return False
            screen.email = ""
        return False
    finally:
        screen.unmount()


def _show_dashboard(pantry):
    routes = []
    screen = pantry.dashboard_screen(navigate=routes.append)
    if not screen.mount():
        typer.secho("Not signed in.", err=True, fg=typer.colors.RED)
        return 1
    try:
        _wait(pantry, screen)
        # Let the background loads land.
        pantry.run_until(lambda: False, timeout_sec=2)
        _print_screen(screen)
        data = screen.content
        if data is None:
            return 1

        user = screen.user or {}
        typer.secho(f"\nHello {user.get('firstName') or user.get('email', '')}", bold=True)
        if screen.stale:
            typer.echo("(offline copy, may be outdated)")
        typer.echo(f"Stores nearby:   {len(data.get('stores', []))}")
        typer.echo(f"Pantry items:    {len(data.get('pantryItems', []))}")
        typer.echo(f"Produce items:   {len(data.get('produceItems', []))}")
        for alert in data.get("buyAlerts", [])[:5]:
            lowest = alert.get("lowestPrice") or {}
            typer.echo(f"  BUY  {alert.get('name', '?')}: ${lowest.get('price') or '?'} at {lowest.get('store', '?')}")
        typer.echo(f"My list:         {len(screen.my_list)} item(s)" + (" (cached)" if screen.list_stale else ""))
        typer.echo(f"My pantry:       {len(screen.my_pantry)} item(s)")
        if screen.price_trends:
            typer.echo(f"Price trends:    {len(screen.price_trends)} series")
        return 0
    finally:
        screen.unmount()


def _ensure_signed_in(pantry, fresh=False):
    if fresh and pantry.session.is_active:
        pantry.session.end()
    if pantry.session.is_active:
        return
    if not _login(pantry):
        log.info("Sign-in did not complete")
        raise typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def default(ctx: typer.Context) -> None:
    """Sign in if needed, then show the dashboard."""
    if ctx.invoked_subcommand is None:
        dashboard()


@app.command()
def dashboard() -> None:
    """Show the dashboard summary."""
    pantry = _start()
    _ensure_signed_in(pantry)
    raise typer.Exit(code=_show_dashboard(pantry))


@app.command()
def login() -> None:
    """Force a fresh sign-in, then show the dashboard."""
    pantry = _start()
    _ensure_signed_in(pantry, fresh=True)
    raise typer.Exit(code=_show_dashboard(pantry))


@app.command()
def logout() -> None:
    """End the stored session and clear cached data."""
    pantry = _start()
    pantry.session.end()
    typer.echo("Signed out.")


@app.command(name="list")
def show_list(
    refresh: bool = typer.Option(False, "--refresh", help="Ignore the cached copy."),
) -> None:
    """Show the shopping list."""
    pantry = _start()
    _ensure_signed_in(pantry)
    token = pantry.session.token
    try:
        result = read_through(
            pantry.cache, KEY_MY_LIST,
            lambda: api.ensure_price_data(api.fetch_my_list(pantry.client, token)),
            force=refresh,
        )
    except PantryError as e:
        typer.secho(f"Failed to load your list: {e}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from e
    if result.stale:
        typer.echo("(offline copy, may be outdated)")
    for item in api.ensure_price_data(result.value):
        lowest = item["lowestPrice"]
        typer.echo(f"  {item.get('name', item.get('id', '?'))}: ${lowest['price'] or '?'} at {lowest['store']}")
    typer.echo(f"{len(result.value or [])} item(s)")


@app.command()
def bulk(
    item: str = typer.Argument(..., help="Item name."),
    price: float = typer.Argument(..., help="Regular price per unit."),
    quantity: int = typer.Argument(..., help="Units in the bulk pack."),
    pack_price: float = typer.Argument(..., help="Price of the bulk pack."),
    monthly_usage: float = typer.Argument(..., help="Units used per month."),
    shelf_life: int = typer.Argument(12, help="Shelf life in months."),
) -> None:
    """Work out whether a bulk pack saves money."""
    pantry = _start()
    try:
        result = calculate_savings(item, price, quantity, pack_price, monthly_usage, shelf_life)
    except ValidationError as e:
        for field, msg in e.errors.items():
            typer.secho(f"  {field}: {msg}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from e
    typer.echo(f"Buy {result.optimal_quantity} x {result.item} "
               f"(~{result.months_supply:.1f} months supply)")
    typer.echo(f"Bulk unit price ${result.bulk_unit_price:.2f} vs ${result.regular_unit_price:.2f}")
    typer.secho(f"Savings ${result.total_savings:.2f} ({result.savings_percentage:.1f}%)",
                fg=typer.colors.GREEN if result.worth_it else None)
    if result.exceeds_shelf_life:
        typer.secho("Warning: that much will not be used before it expires.", fg=typer.colors.YELLOW)
    save_calculation(pantry.client, pantry.session.token, result)


def main():
    """Primary client entry point."""
    app()


if __name__ == "__main__":
    main()
