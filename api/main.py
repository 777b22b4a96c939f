from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Request, status, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Callable, List, Optional
import logging

from config.settings import get_settings
from core.catalog.importer import parse_file, parse_lines
from core.catalog.product import filter_products
from core.database.operations import get_engine
from core.errors import CatalogError, ConflictOrConstraint, NotFound, TableMissing, TransientNetwork, ValidationFailure
from core.notifications import LogNotifier, Notifier
from core.orders.cart import DraftOrder
from core.orders.pricing import CartItem, build_receipt, compute_order_totals
from core.orders.repository import SavedOrder
from core.session import CatalogSession, LoadError
from core.storage.base import RowStore
from core.storage.sql_store import SQLRowStore

from .models import (
    ProductCreate,
    BulkImportRequest,
    PriceUpdate,
    ReviewRequest,
    OrderCreate,
    QuoteRequest,
    Product,
    ImportResponse,
    ReviewResponse,
    PendingResponse,
    HistoryEntry,
    Order,
    QuoteResponse,
    DeleteResponse,
)

logger = logging.getLogger(__name__)

SETUP_HINT = "Catalog tables are missing. Run 'python cli.py init' or POST /setup."

AdminCheck = Callable[[Request], bool]


def allow_all(request: Request) -> bool:
    """Default admin predicate; replace it to gate admin routes."""
    return True


def http_error(e: CatalogError) -> HTTPException:
    """Translate a core error into the matching HTTP error."""
    if isinstance(e, TableMissing):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=SETUP_HINT)
    if isinstance(e, ValidationFailure):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ConflictOrConstraint):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, TransientNetwork):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Storage unavailable: {e}",
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def order_response(order: SavedOrder) -> Order:
    return Order(
        id=order.id,
        name=order.name,
        items=[item.to_dict() for item in order.items],
        profit_margin=order.profit_margin,
        delivery_cost=order.delivery_cost,
        total_price=order.total_price,
        created_at=order.created_at,
    )


def draft_from_request(request: OrderCreate) -> DraftOrder:
    draft = DraftOrder()
    draft.items = [CartItem(**item.model_dump()) for item in request.items]
    draft.global_margin = request.profit_margin
    draft.delivery_cost = request.delivery_cost
    draft.name = request.name or ""
    return draft


def get_session(request: Request) -> CatalogSession:
    return request.app.state.session


async def require_admin(request: Request):
    if not request.app.state.admin_check(request):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")


def create_app(store: Optional[RowStore] = None,
               notifier: Optional[Notifier] = None,
               admin_check: AdminCheck = allow_all,
               seed_records=None) -> FastAPI:
    """Build the API around one catalog session.

    The session is started on application startup (catalog load, change
    feed subscription) and closed on shutdown.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        seeds = seed_records
        if seeds is None and settings.SEED_FILE:
            seeds = parse_file(settings.SEED_FILE)
        session = CatalogSession(
            store or SQLRowStore(get_engine()),
            notifier=notifier or LogNotifier(),
            seed_records=seeds,
        )
        app.state.session = session
        app.state.admin_check = admin_check
        if not await session.start():
            logger.warning("API started without a loaded catalog: %s", session.load_error)
        try:
            yield
        finally:
            await session.close()

    app = FastAPI(
        title="Price Book API",
        description="Shared price list, review requests and order pricing",
        version=settings.PROJECT_VERSION,
        lifespan=lifespan,
    )

    # Enable CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, replace with specific origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", tags=["General"])
    async def root():
        """Root endpoint providing API information."""
        return {
            "name": settings.PROJECT_NAME,
            "version": settings.PROJECT_VERSION,
            "endpoints": {
                "GET /products": "Current catalog",
                "POST /products": "Add a product",
                "POST /products/import": "Bulk add from text lines",
                "PUT /products/{id}/price": "Save a new price",
                "POST /reviews": "Request a price review",
                "GET /history": "Price ledger",
                "GET /orders": "Saved orders",
                "POST /orders/quote": "Price an unsaved cart",
            },
        }

    @app.get("/status", tags=["General"])
    async def get_status(session: CatalogSession = Depends(get_session)):
        """Load state of the catalog session."""
        load_error = session.load_error
        if isinstance(load_error, LoadError):
            load_error = load_error.value
        return {
            "ready": session.ready,
            "load_error": load_error,
            "products": len(session.products),
            "pending_reviews": session.sync.pending_count,
            "version": session.sync.version,
        }

    @app.post("/setup", tags=["General"], dependencies=[Depends(require_admin)])
    async def setup(session: CatalogSession = Depends(get_session)):
        """Create missing tables and reload the catalog."""
        try:
            ready = await session.repair()
        except CatalogError as e:
            raise http_error(e) from e
        return {"ready": ready}

    @app.get("/products", response_model=List[Product], tags=["Catalog"])
    async def get_products(
        search: str = "",
        pending: bool = False,
        session: CatalogSession = Depends(get_session),
    ):
        """Catalog ordered by name, optionally filtered."""
        try:
            products = await session.catalog.fetch_products()
        except CatalogError as e:
            raise http_error(e) from e
        return [Product.model_validate(p) for p in filter_products(products, search, pending)]

    @app.post("/products", response_model=Product, status_code=status.HTTP_201_CREATED, tags=["Catalog"])
    async def add_product(request: ProductCreate, session: CatalogSession = Depends(get_session)):
        try:
            product = await session.catalog.add_product(request.name, request.price)
        except CatalogError as e:
            raise http_error(e) from e
        return Product.model_validate(product)

    @app.post(
        "/products/import",
        response_model=ImportResponse,
        tags=["Catalog"],
        dependencies=[Depends(require_admin)],
    )
    async def import_products(request: BulkImportRequest, session: CatalogSession = Depends(get_session)):
        """Add one product per non-blank line."""
        records = parse_lines(request.text)
        if not records:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No valid products found in the text",
            )
        try:
            products = await session.catalog.add_batch_products(records)
        except CatalogError as e:
            raise http_error(e) from e
        return ImportResponse(
            success=True,
            count=len(products),
            products=[Product.model_validate(p) for p in products],
            message=f"Imported {len(products)} products",
        )

    @app.put("/products/{product_id}/price", response_model=Product, tags=["Catalog"])
    async def update_price(product_id: str, request: PriceUpdate,
                           session: CatalogSession = Depends(get_session)):
        """Save a price; a pending review on the product is completed too."""
        try:
            product = await session.commit_price(product_id, request.price)
        except CatalogError as e:
            raise http_error(e) from e
        return Product.model_validate(product)

    @app.delete(
        "/products",
        response_model=DeleteResponse,
        tags=["Catalog"],
        dependencies=[Depends(require_admin)],
    )
    async def delete_products(
        ids: List[str] = Query(...),
        confirm: bool = Query(False, description="Must be true; deletion cannot be undone"),
        session: CatalogSession = Depends(get_session),
    ):
        try:
            deleted = await session.delete_products(ids, confirmed=confirm)
        except CatalogError as e:
            raise http_error(e) from e
        return DeleteResponse(deleted=deleted)

    @app.post(
        "/reviews",
        response_model=ReviewResponse,
        tags=["Reviews"],
        dependencies=[Depends(require_admin)],
    )
    async def request_review(request: ReviewRequest, session: CatalogSession = Depends(get_session)):
        try:
            batch = await session.request_review(request.product_ids, request.batch_id)
        except CatalogError as e:
            raise http_error(e) from e
        return ReviewResponse(batch_id=batch.batch_id, count=batch.count)

    @app.delete("/reviews/{product_id}", tags=["Reviews"])
    async def complete_review(product_id: str, session: CatalogSession = Depends(get_session)):
        """Mark a product as reviewed without changing its price."""
        try:
            await session.complete_review(product_id)
        except CatalogError as e:
            raise http_error(e) from e
        return {"product_id": product_id, "is_review_requested": False}

    @app.get("/reviews/pending", response_model=PendingResponse, tags=["Reviews"])
    async def pending_reviews(session: CatalogSession = Depends(get_session)):
        try:
            products = await session.catalog.fetch_products()
        except CatalogError as e:
            raise http_error(e) from e
        pending = session.review.pending(products)
        return PendingResponse(count=len(pending), products=[Product.model_validate(p) for p in pending])

    @app.get("/history", response_model=List[HistoryEntry], tags=["History"])
    async def get_history(product_id: Optional[str] = None,
                          session: CatalogSession = Depends(get_session)):
        """Ledger entries, newest first; deleted products keep their entries."""
        try:
            if product_id:
                entries = await session.ledger.entries_for(product_id)
            else:
                entries = await session.ledger.all_entries()
            products = await session.catalog.fetch_products()
        except CatalogError as e:
            raise http_error(e) from e
        names = {p.id: p.name for p in products}
        entries = sorted(entries, key=lambda entry: entry.recorded_date, reverse=True)
        return [
            HistoryEntry(
                product_id=entry.product_id,
                product_name=names.get(entry.product_id, "منتج محذوف"),
                price=entry.price,
                recorded_date=entry.recorded_date,
            )
            for entry in entries
        ]

    @app.get("/orders", response_model=List[Order], tags=["Orders"])
    async def list_orders(session: CatalogSession = Depends(get_session)):
        """Saved orders, newest first."""
        try:
            orders = await session.orders.list()
        except CatalogError as e:
            raise http_error(e) from e
        return [order_response(order) for order in orders]

    @app.post("/orders/quote", response_model=QuoteResponse, tags=["Orders"])
    async def quote_order(request: QuoteRequest):
        """Totals and receipt for a cart that is not saved."""
        items = [CartItem(**item.model_dump()) for item in request.items]
        totals = compute_order_totals(items, request.profit_margin, request.delivery_cost)
        return QuoteResponse(
            sub_total=totals.sub_total,
            delivery=totals.delivery,
            grand_total=totals.grand_total,
            receipt=build_receipt(request.name, items, request.profit_margin, totals),
        )

    @app.get("/orders/{order_id}", response_model=Order, tags=["Orders"])
    async def get_order(order_id: str, session: CatalogSession = Depends(get_session)):
        try:
            order = await session.orders.get(order_id)
        except CatalogError as e:
            raise http_error(e) from e
        return order_response(order)

    @app.post("/orders", response_model=Order, status_code=status.HTTP_201_CREATED, tags=["Orders"])
    async def create_order(request: OrderCreate, session: CatalogSession = Depends(get_session)):
        try:
            order = await session.orders.save_draft(draft_from_request(request))
        except CatalogError as e:
            raise http_error(e) from e
        return order_response(order)

    @app.put("/orders/{order_id}", response_model=Order, tags=["Orders"])
    async def update_order(order_id: str, request: OrderCreate,
                           session: CatalogSession = Depends(get_session)):
        """Re-save an existing order; its total is recomputed from the new items."""
        draft = draft_from_request(request)
        draft.editing_id = order_id
        try:
            if not draft.name:
                draft.name = (await session.orders.get(order_id)).name
            order = await session.orders.save_draft(draft)
        except CatalogError as e:
            raise http_error(e) from e
        return order_response(order)

    @app.delete("/orders/{order_id}", response_model=DeleteResponse, tags=["Orders"])
    async def delete_order(
        order_id: str,
        confirm: bool = Query(False, description="Must be true; deletion cannot be undone"),
        session: CatalogSession = Depends(get_session),
    ):
        try:
            deleted = await session.delete_order(order_id, confirmed=confirm)
        except CatalogError as e:
            raise http_error(e) from e
        return DeleteResponse(deleted=deleted)

    # Error handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(_request, exc):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(CatalogError)
    async def catalog_error_handler(_request, exc):
        error = http_error(exc)
        return JSONResponse(status_code=error.status_code, content={"detail": error.detail})

    return app


app = create_app()


# Run with: uvicorn api.main:app --reload
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=True)
