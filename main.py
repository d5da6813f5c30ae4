import logging
from datetime import date
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request, Response
from sqlalchemy.orm import Session

from database import SessionLocal
from models import Category, Subcategory, Transaction, TransactionType
from periods import Period, resolve_period
from scheduler import SchedulerManager
from schemas import (
    CategoryIn,
    CategoryRenameIn,
    ProfileIn,
    SubcategoryIn,
    TransactionIn,
)
from seeding import TaxonomySeeder
from services import (
    CategoryService,
    MetricsService,
    ProfileService,
    SubcategoryService,
    TransactionFilters,
    TransactionService,
    get_current_user_id,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Kakeibo")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_seeder() -> TaxonomySeeder:
    return TaxonomySeeder(SessionLocal)


def current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    return x_user_id or get_current_user_id()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def type_from_request(request: Request) -> Optional[TransactionType]:
    type_param = request.query_params.get("type")
    if not type_param:
        return None
    try:
        return TransactionType(type_param)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid type") from exc


def filters_from_request(request: Request) -> TransactionFilters:
    category_param = request.query_params.get("category")
    category_id = None
    if category_param:
        try:
            category_id = int(category_param)
        except ValueError:
            category_id = None
    return TransactionFilters(
        type=type_from_request(request),
        category_id=category_id,
        query=request.query_params.get("q"),
    )


def category_out(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "icon": category.icon,
        "color": category.color,
        "is_default": category.is_default,
    }


def subcategory_out(subcategory: Subcategory) -> dict[str, object]:
    return {
        "id": subcategory.id,
        "category_id": subcategory.category_id,
        "name": subcategory.name,
        "is_default": subcategory.is_default,
    }


def transaction_out(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "type": txn.type.value,
        "amount": str(txn.amount),
        "category_id": txn.category_id,
        "category": txn.category.name if txn.category else None,
        "subcategory_id": txn.subcategory_id,
        "subcategory": txn.subcategory.name if txn.subcategory else None,
        "description": txn.description,
    }


@app.post("/api/profiles", status_code=201)
def create_profile(
    data: ProfileIn,
    db: Session = Depends(get_db),
    seeder: TaxonomySeeder = Depends(get_seeder),
):
    try:
        profile = ProfileService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    seed = seeder.ensure_defaults(profile.id)
    return {"id": profile.id, "email": profile.email, "seed": seed}


@app.get("/api/profiles/me")
def current_profile(
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        profile = ProfileService(db).get(user_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        "id": profile.id,
        "email": profile.email,
        "display_name": profile.display_name,
        "created_at": profile.created_at.isoformat(),
    }


@app.post("/api/defaults/ensure")
def ensure_defaults(
    user_id: int = Depends(current_user_id),
    seeder: TaxonomySeeder = Depends(get_seeder),
):
    return seeder.ensure_defaults(user_id)


@app.get("/api/categories")
def list_categories(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    txn_type = type_from_request(request)
    only_default = request.query_params.get("default") in ("1", "true")
    categories = CategoryService(db, user_id).list_all(
        txn_type, only_default=only_default
    )
    return [category_out(c) for c in categories]


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        category = CategoryService(db, user_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return category_out(category)


@app.post("/api/categories/{category_id}/rename")
def rename_category(
    category_id: int,
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        data = CategoryRenameIn(**payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        category = CategoryService(db, user_id).rename(category_id, data.name)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return category_out(category)


@app.get("/api/categories/{category_id}/usage")
def category_usage(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        count = CategoryService(db, user_id).usage_count(category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"id": category_id, "transactions": count, "in_use": count > 0}


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    seeder: TaxonomySeeder = Depends(get_seeder),
):
    try:
        deleted = CategoryService(db, user_id).delete(category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    logger.info(
        f"category_deleted: user_id={deleted.user_id} id={deleted.id} is_default={deleted.is_default}"
    )
    if deleted.is_default:
        scheduler_manager.submit(
            seeder.record_deleted_default_category,
            deleted.user_id,
            deleted.name,
            deleted.type,
        )
    return {"id": deleted.id, "is_default": deleted.is_default}


@app.get("/api/categories/{category_id}/subcategories")
def list_subcategories(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    items = SubcategoryService(db, user_id).list_for_categories([category_id])
    return [subcategory_out(s) for s in items]


@app.post("/api/subcategories", status_code=201)
def create_subcategory(
    data: SubcategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        subcategory = SubcategoryService(db, user_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return subcategory_out(subcategory)


@app.delete("/api/subcategories/{subcategory_id}", status_code=204)
def delete_subcategory(
    subcategory_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        SubcategoryService(db, user_id).delete(subcategory_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/transactions")
def api_transactions(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = period_from_request(request)
    filters = filters_from_request(request)
    page = max(int(request.query_params.get("page", "1")), 1)
    limit = int(request.query_params.get("limit", "50"))
    limit = min(max(limit, 1), 100)
    offset = (page - 1) * limit
    items = TransactionService(db, user_id).list_for_period(
        period, filters, limit=limit + 1, offset=offset
    )
    has_more = len(items) > limit
    items = items[:limit]
    return {
        "items": [transaction_out(txn) for txn in items],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = TransactionService(db, user_id)
    try:
        txn = service.create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return transaction_out(service.get(txn.id))


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = TransactionService(db, user_id)
    try:
        txn = service.update(transaction_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return transaction_out(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/kpis")
def api_kpis(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = period_from_request(request)
    return MetricsService(db, user_id).kpis(period)


@app.get("/api/monthly-series")
def api_monthly_series(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = period_from_request(request)
    return MetricsService(db, user_id).monthly_series(period)


@app.get("/api/category-breakdown")
def api_category_breakdown(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = period_from_request(request)
    txn_type = type_from_request(request)
    return MetricsService(db, user_id).category_breakdown(period, txn_type)


@app.get("/api/category-transactions")
def api_category_transactions(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = period_from_request(request)
    txn_type = type_from_request(request) or TransactionType.expense
    return MetricsService(db, user_id).category_transactions(period, txn_type)


@app.get("/api/comparison")
def api_comparison(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = period_from_request(request)
    return MetricsService(db, user_id).year_over_year(period)


@app.get("/api/reports/monthly")
def api_monthly_report(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    month_param = request.query_params.get("month")
    try:
        month = (
            date.fromisoformat(f"{month_param}-01") if month_param else date.today()
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid month") from exc
    return MetricsService(db, user_id).monthly_report(month)
