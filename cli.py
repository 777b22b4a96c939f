import click
import asyncio
import logging
import sqlalchemy.exc
from tabulate import tabulate
import traceback

from config.settings import get_settings
from core.catalog.history import HistoryLedger
from core.catalog.importer import parse_file
from core.catalog.product import filter_products
from core.catalog.review import ReviewWorkflow
from core.catalog.sanitizer import Priced, to_price
from core.catalog.service import CatalogService
from core.database.operations import create_db_engine, get_engine, init_db
from core.errors import CatalogError, ConflictOrConstraint, NotFound, TableMissing, TransientNetwork, ValidationFailure
from core.export import build_current_list, build_history_workbook, write_csv_bundle
from core.notifications import LogNotifier
from core.orders.pricing import build_receipt, compute_order_totals, format_amount
from core.orders.repository import OrderRepository
from core.session import CatalogSession
from core.storage.poller import ChangePoller
from core.storage.sql_store import SQLRowStore

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("pricebook-cli")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--database-url", envvar="DATABASE_URL", help="Override the configured database URL")
@click.pass_context
def cli(ctx, verbose, database_url):
    """Shared price list and order tool."""
    # Store options in the Click context instead of global variables
    ctx.ensure_object(dict)
    ctx.obj["VERBOSE"] = verbose
    ctx.obj["DATABASE_URL"] = database_url

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")


def get_store(ctx) -> SQLRowStore:
    if "STORE" not in ctx.obj:
        url = ctx.obj.get("DATABASE_URL")
        engine = create_db_engine(url) if url else get_engine()
        ctx.obj["STORE"] = SQLRowStore(engine)
    return ctx.obj["STORE"]


def report_error(ctx, e: Exception):
    """Print a readable message for a failed command and exit non-zero."""
    if isinstance(e, TableMissing):
        click.echo(f"Database error: {e}")
        click.echo("The catalog tables have not been created. Run the 'init' command first.")
    elif isinstance(e, ValidationFailure):
        click.echo(f"Invalid input: {e}")
    elif isinstance(e, NotFound):
        click.echo(f"Not found: {e}")
    elif isinstance(e, ConflictOrConstraint):
        click.echo(f"Rejected by the database: {e}")
    elif isinstance(e, TransientNetwork):
        click.echo(f"Network error: {e}")
        click.echo("Check that the database server is running and reachable, then retry.")
    elif isinstance(e, sqlalchemy.exc.SQLAlchemyError):
        click.echo(f"Database error: {str(e)}")
    else:
        click.echo(f"Error: {str(e)}")

    if ctx.obj.get("VERBOSE"):
        click.echo(traceback.format_exc())
    ctx.exit(1)


def run(ctx, coro):
    """Run a coroutine to completion, reporting core errors."""
    try:
        return asyncio.run(coro)
    except (CatalogError, sqlalchemy.exc.SQLAlchemyError) as e:
        report_error(ctx, e)


def display_price(price) -> str:
    variant = to_price(price)
    return format_amount(variant.amount) if isinstance(variant, Priced) else "غير مسعر"


@cli.command()
@click.option("--seed", "-s", type=click.Path(exists=True, dir_okay=False),
              help="Text file with one product per line, used if the catalog is empty")
@click.pass_context
def init(ctx, seed):
    """Initialize the database (safe to run again)."""
    store = get_store(ctx)
    try:
        init_db(store.engine)
    except sqlalchemy.exc.SQLAlchemyError as e:
        report_error(ctx, e)
    click.echo("Database initialized!")

    if seed:
        records = parse_file(seed)
        seeded = run(ctx, CatalogService(store).initialize_data(records))
        if seeded:
            click.echo(f"Seeded {seeded} products.")
        else:
            click.echo("Catalog already has products, seeding skipped.")


@cli.command()
@click.option("--search", "-q", default="", help="Only products whose name contains this text")
@click.option("--pending", "-p", is_flag=True, help="Only products waiting for review")
@click.option(
    "--format-type",
    "-f",
    type=click.Choice(["table", "csv", "text"]),
    default="table",
    help="Output format (default: table)",
)
@click.pass_context
def products(ctx, search, pending, format_type):
    """List the catalog."""
    catalog = run(ctx, CatalogService(get_store(ctx)).fetch_products())
    catalog = filter_products(catalog, search, pending)
    if not catalog:
        click.echo("No products found.")
        return

    if format_type == "text":
        for i, p in enumerate(catalog, 1):
            flag = " [review]" if p.is_review_requested else ""
            click.echo(f"{i}. {p.name}: {display_price(p.price)}{flag}")
        return

    headers = ["Product", "Price", "Updated", "Review", "ID"]
    rows = [
        [
            p.name,
            display_price(p.price),
            p.last_updated.strftime("%Y-%m-%d %H:%M") if p.last_updated else "",
            p.review_batch_id or "",
            p.id,
        ]
        for p in catalog
    ]
    if format_type == "csv":
        click.echo(tabulate(rows, headers=headers, tablefmt="tsv"))
    else:
        click.echo(tabulate(rows, headers=headers, tablefmt="grid"))
    click.echo(f"\n{len(catalog)} products, {ReviewWorkflow.pending_count(catalog)} waiting for review")


@cli.command()
@click.argument("name")
@click.argument("price", required=False)
@click.pass_context
def add(ctx, name, price):
    """Add a product (price optional)."""
    product = run(ctx, CatalogService(get_store(ctx)).add_product(name, price))
    click.echo(f"Added '{product.name}' ({display_price(product.price)}) with ID {product.id}")


@cli.command(name="import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_products(ctx, path):
    """Bulk add products from a text file ('name price' per line)."""
    records = parse_file(path)
    if not records:
        click.echo("No valid products found in the file.")
        return
    added = run(ctx, CatalogService(get_store(ctx)).add_batch_products(records))
    click.echo(f"Imported {len(added)} products.")


@cli.command()
@click.argument("product_id")
@click.argument("price")
@click.pass_context
def price(ctx, product_id, price):
    """Save a new price for a product (completes a pending review)."""
    product = run(ctx, CatalogService(get_store(ctx)).commit_price(product_id, price))
    click.echo(f"{product.name}: {display_price(product.price)}")


@cli.group()
def review():
    """Request or complete price reviews."""


@review.command(name="request")
@click.argument("product_ids", nargs=-1, required=True)
@click.option("--batch-id", help="Grouping token (generated when omitted)")
@click.pass_context
def review_request(ctx, product_ids, batch_id):
    """Flag products for price review."""
    batch = run(ctx, ReviewWorkflow(get_store(ctx)).request_review(product_ids, batch_id))
    click.echo(f"Review requested for {batch.count} products (batch {batch.batch_id}).")


@review.command(name="complete")
@click.argument("product_id")
@click.pass_context
def review_complete(ctx, product_id):
    """Mark a product as reviewed without changing its price."""
    run(ctx, ReviewWorkflow(get_store(ctx)).complete_review(product_id))
    click.echo("Review completed.")


@cli.command()
@click.argument("product_ids", nargs=-1, required=True)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx, product_ids, yes):
    """Delete products permanently."""
    if not yes and not click.confirm(
        f"Delete {len(set(product_ids))} products? This cannot be undone."
    ):
        click.echo("Cancelled.")
        return
    deleted = run(ctx, CatalogService(get_store(ctx)).delete_products(product_ids))
    click.echo(f"Deleted {deleted} products.")


@cli.command()
@click.option("--product", "-p", "product_id", help="Only this product")
@click.pass_context
def history(ctx, product_id):
    """Show the daily price ledger."""
    store = get_store(ctx)

    async def load():
        ledger = HistoryLedger(store)
        entries = await (ledger.entries_for(product_id) if product_id else ledger.all_entries())
        catalog = await CatalogService(store).fetch_products()
        return entries, {p.id: p.name for p in catalog}

    entries, names = run(ctx, load())
    if not entries:
        click.echo("No price history recorded.")
        return

    entries = sorted(entries, key=lambda e: (e.recorded_date, names.get(e.product_id, "")), reverse=True)
    rows = [
        [e.recorded_date.isoformat(), names.get(e.product_id, "منتج محذوف"), format_amount(e.price)]
        for e in entries
    ]
    click.echo(tabulate(rows, headers=["Date", "Product", "Price"], tablefmt="grid"))


@cli.group()
def orders():
    """Saved orders."""


@orders.command(name="list")
@click.pass_context
def orders_list(ctx):
    """List saved orders, newest first."""
    saved = run(ctx, OrderRepository(get_store(ctx)).list())
    if not saved:
        click.echo("No saved orders.")
        return
    rows = [
        [
            order.name,
            len(order.items),
            f"{order.profit_margin:g}%",
            format_amount(order.delivery_cost),
            format_amount(order.total_price),
            order.created_at.strftime("%Y-%m-%d %H:%M") if order.created_at else "",
            order.id,
        ]
        for order in saved
    ]
    headers = ["Order", "Items", "Margin", "Delivery", "Total", "Created", "ID"]
    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


@orders.command(name="show")
@click.argument("order_id")
@click.pass_context
def orders_show(ctx, order_id):
    """Print the receipt of a saved order."""
    order = run(ctx, OrderRepository(get_store(ctx)).get(order_id))
    totals = compute_order_totals(order.items, order.profit_margin, order.delivery_cost)
    click.echo(build_receipt(order.name, order.items, order.profit_margin, totals))
    click.echo(f"\nSaved total: {format_amount(order.total_price)}")


@orders.command(name="delete")
@click.argument("order_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def orders_delete(ctx, order_id, yes):
    """Delete a saved order."""
    if not yes and not click.confirm("Delete this order?"):
        click.echo("Cancelled.")
        return
    run(ctx, OrderRepository(get_store(ctx)).delete(order_id))
    click.echo("Order deleted.")


@cli.command()
@click.argument("directory", type=click.Path(file_okay=False))
@click.option("--with-history", is_flag=True, help="Add one sheet per recorded date")
@click.pass_context
def export(ctx, directory, with_history):
    """Export the price list as CSV sheets."""
    store = get_store(ctx)

    async def load():
        catalog = await CatalogService(store).fetch_products()
        entries = await HistoryLedger(store).all_entries() if with_history else None
        return catalog, entries

    catalog, entries = run(ctx, load())
    if with_history:
        sheets = build_history_workbook(catalog, entries)
    else:
        sheets = build_current_list(catalog)
    try:
        paths = write_csv_bundle(sheets, directory)
    except (IOError, OSError) as e:
        report_error(ctx, e)
    for path in paths:
        click.echo(f"Wrote {path}")


@cli.command()
@click.option("--seconds", "-s", type=float, default=None,
              help="Stop after this many seconds (default: run until interrupted)")
@click.option("--interval", "-i", type=float, default=2.0, help="Polling interval in seconds")
@click.pass_context
def watch(ctx, seconds, interval):
    """Follow catalog changes and log review requests as they arrive."""
    store = get_store(ctx)

    async def follow():
        session = CatalogSession(store, notifier=LogNotifier())
        if not await session.start():
            click.echo(f"Could not load the catalog: {session.load_error}")
            return
        session.sync.add_listener(
            lambda snapshot: logger.info(
                "Catalog reloaded: %d products, %d waiting for review",
                len(snapshot), ReviewWorkflow.pending_count(snapshot),
            )
        )
        poller = asyncio.create_task(ChangePoller(store, "products", interval).run())
        click.echo(f"Watching {len(session.products)} products (Ctrl+C to stop)...")
        try:
            if seconds is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(seconds)
        finally:
            poller.cancel()
            try:
                await poller
            except asyncio.CancelledError:
                pass
            await session.close()

    try:
        run(ctx, follow())
    except KeyboardInterrupt:
        click.echo("Stopped.")


if __name__ == "__main__":
    # This runs the Click application
    cli.main(obj={})
