import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from auth import AuthError, AuthService, SessionRequired
from catalog import CATEGORIES, apply_preset, categories_by_type, get_category
from config import get_settings
from currency import CURRENCIES, format_currency
from database import SessionLocal
from insights import (
    available_months,
    category_breakdown,
    history_groups,
    in_month,
    recent,
    top_spending,
)
from models import Account, TransactionType
from periods import current_month_key, month_label, parse_month_key
from remote import RemoteError, RemoteStore
from schemas import (
    CredentialsIn,
    CurrencyIn,
    DebtPaymentIn,
    PasswordResetConfirmIn,
    PasswordResetRequestIn,
    PresetListIn,
    TransactionForm,
)
from store import FinanceStore, StoreRegistry, ValidationError
from sync import CONFLICT, NOT_FOUND, MutationResult

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="SpendTracker", version=APP_VERSION)
app.state.session_factory = SessionLocal
app.state.stores = StoreRegistry(RemoteStore(SessionLocal))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"detail": jsonable_encoder(exc.errors())}, status_code=400
    )


@app.exception_handler(RemoteError)
async def remote_error_handler(request: Request, exc: RemoteError):
    logger.exception(f"remote_unavailable: path={request.url.path}")
    return JSONResponse({"detail": str(exc)}, status_code=502)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def session_token(request: Request) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


def current_account(request: Request, db: Session = Depends(get_db)) -> Account:
    try:
        return AuthService(db).get_session(session_token(request))
    except SessionRequired as exc:
        raise HTTPException(
            status_code=401, detail=str(exc), headers={"Location": "/login"}
        ) from exc


async def current_store(
    request: Request, account: Account = Depends(current_account)
) -> FinanceStore:
    return await request.app.state.stores.get(account.id)


def month_from_request(request: Request, default: Optional[str]) -> Optional[str]:
    month = request.query_params.get("month") or default
    if month is None or month == "all":
        return None
    try:
        parse_month_key(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return month


def raise_for_result(result: MutationResult) -> None:
    if result.ok:
        return
    status_code = {CONFLICT: 409, NOT_FOUND: 404}.get(result.code, 502)
    raise HTTPException(status_code=status_code, detail=result.error)


def money(cents: int, store: FinanceStore) -> dict[str, object]:
    return {"cents": cents, "display": format_currency(cents, store.currency)}


# auth


@app.post("/auth/sign-up", status_code=201)
def sign_up(payload: CredentialsIn, db: Session = Depends(get_db)):
    service = AuthService(db)
    try:
        account = service.sign_up(payload.email, payload.password)
    except AuthError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    response = JSONResponse({"user_id": account.id, "email": account.email}, 201)
    response.set_cookie(
        SESSION_COOKIE, service.issue_token(account), httponly=True, samesite="lax"
    )
    return response


@app.post("/auth/sign-in")
def sign_in(payload: CredentialsIn, db: Session = Depends(get_db)):
    try:
        token = AuthService(db).sign_in(payload.email, payload.password)
    except AuthError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    response = JSONResponse({"ok": True})
    response.set_cookie(SESSION_COOKIE, token, httponly=True, samesite="lax")
    return response


@app.post("/auth/sign-out", status_code=204)
def sign_out(request: Request, db: Session = Depends(get_db)):
    service = AuthService(db)
    token = session_token(request)
    try:
        account = service.get_session(token)
        service.sign_out(token)
    except SessionRequired:
        account = None
    if account is not None:
        request.app.state.stores.drop(account.id)
    response = Response(status_code=204)
    response.delete_cookie(SESSION_COOKIE)
    return response


@app.post("/auth/password-reset", status_code=202)
def request_password_reset(
    payload: PasswordResetRequestIn, db: Session = Depends(get_db)
):
    token = AuthService(db).request_password_reset(payload.email)
    if token:
        # delivery of the link belongs to the mail integration
        logger.info("password_reset_link_issued")
    return {"detail": "If that email exists, a reset link has been sent."}


@app.post("/auth/password-reset/confirm")
def confirm_password_reset(
    payload: PasswordResetConfirmIn, request: Request, db: Session = Depends(get_db)
):
    if payload.password != payload.password_confirm:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    try:
        account = AuthService(db).confirm_password_reset(
            payload.token, payload.password
        )
    except AuthError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    request.app.state.stores.drop(account.id)
    return {"ok": True}


# read models


@app.get("/categories")
def list_categories():
    return {
        "categories": [c.to_dict() for c in CATEGORIES],
        "by_type": {
            txn_type.value: [c.id for c in categories_by_type(txn_type)]
            for txn_type in TransactionType
        },
    }


@app.get("/overview")
async def overview(request: Request, store: FinanceStore = Depends(current_store)):
    month = month_from_request(request, current_month_key())
    if month is None:
        raise HTTPException(status_code=400, detail="Overview needs a month")
    totals = store.month_totals(month)
    cumulative = store.cumulative_totals()
    status = store.month_status(month)
    return {
        "month": month,
        "label": month_label(month),
        "months": available_months(store.transactions),
        "currency": store.currency,
        "totals": totals.to_dict(),
        "remaining": money(totals.remaining, store),
        "total_savings": money(cumulative.total_savings, store),
        "total_emergency_fund": money(cumulative.total_emergency_fund, store),
        "total_debt": money(store.total_debt(), store),
        "status": status.to_dict() if status else None,
        "can_close": not store.is_month_closed(month),
        "top_spending": [s.to_dict() for s in top_spending(store.transactions, month)],
        "recent": [t.to_dict() for t in recent(store.transactions, month)],
    }


@app.get("/transactions")
async def list_transactions(
    request: Request, store: FinanceStore = Depends(current_store)
):
    category_id = request.query_params.get("category") or None
    if category_id and get_category(category_id) is None:
        raise HTTPException(status_code=400, detail="Unknown category")
    groups = history_groups(store.transactions, category_id)
    return {
        "groups": [
            {
                "date": day.isoformat(),
                "transactions": [
                    {**t.to_dict(), "pending": store.is_pending(t.id)} for t in txns
                ],
            }
            for day, txns in groups
        ]
    }


@app.get("/insights")
async def insights(request: Request, store: FinanceStore = Depends(current_store)):
    month = month_from_request(request, None)
    txns = in_month(store.transactions, month)
    totals = store.period_totals(month)
    cumulative = store.cumulative_totals()
    breakdown = {
        txn_type.value: [
            s.to_dict(include_transactions=True)
            for s in category_breakdown(txns, txn_type)
        ]
        for txn_type in (
            TransactionType.income,
            TransactionType.expense,
            TransactionType.savings,
        )
    }
    return {
        "month": month or "all",
        "label": month_label(month) if month else "All Time",
        "months": ["all", *sorted({t.month for t in store.transactions}, reverse=True)],
        "totals": {
            "income": totals.income,
            "expenses": totals.expenses,
            "savings": totals.total_saved,
        },
        "cumulative": cumulative.to_dict(),
        "categories": breakdown,
    }


@app.get("/presets")
async def list_presets(store: FinanceStore = Depends(current_store)):
    return {"presets": [p.to_dict() for p in store.presets]}


@app.get("/presets/{preset_id}/draft")
async def preset_draft(preset_id: str, store: FinanceStore = Depends(current_store)):
    preset = next((p for p in store.presets if p.id == preset_id), None)
    if preset is None:
        raise HTTPException(status_code=404, detail="Preset not found")
    draft = apply_preset(preset)
    return {
        "amount_cents": draft.amount_cents,
        "category_id": draft.category_id,
        "type": draft.type.value,
        "subcategory": draft.subcategory,
        "note": draft.note,
        "funded_from": draft.funded_from.value if draft.funded_from else None,
    }


@app.get("/settings")
async def get_user_settings(
    account: Account = Depends(current_account),
    store: FinanceStore = Depends(current_store),
):
    return {
        "email": account.email,
        "currency": store.currency,
        "currencies": [
            {"code": c.code, "symbol": c.symbol, "name": c.name}
            for c in CURRENCIES.values()
        ],
    }


# mutations


@app.post("/transactions", status_code=201)
async def create_transaction(
    payload: TransactionForm, store: FinanceStore = Depends(current_store)
):
    try:
        result = await store.add_transaction(payload.to_input())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise_for_result(result)
    return result.value.to_dict()


@app.delete("/transactions/{transaction_id}", status_code=204)
async def delete_transaction(
    transaction_id: str, store: FinanceStore = Depends(current_store)
):
    if store.get_transaction(transaction_id) is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    try:
        result = await store.delete_transaction(transaction_id)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise_for_result(result)
    return Response(status_code=204)


@app.post("/debt/payments", status_code=201)
async def pay_debt(
    payload: DebtPaymentIn, store: FinanceStore = Depends(current_store)
):
    try:
        result = await store.pay_debt(payload.amount)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise_for_result(result)
    return {
        "transaction": result.value.to_dict(),
        "total_debt": money(store.total_debt(), store),
    }


@app.put("/presets")
async def save_presets(
    payload: PresetListIn, store: FinanceStore = Depends(current_store)
):
    try:
        result = await store.save_presets(payload.presets)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise_for_result(result)
    return {"presets": [p.to_dict() for p in store.presets]}


@app.post("/months/{month}/close")
async def close_month(month: str, store: FinanceStore = Depends(current_store)):
    try:
        result = await store.close_month(month)
    except ValidationError as exc:
        status_code = 409 if store.is_month_closed(month) else 400
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    raise_for_result(result)
    outcome = result.value
    return {
        "status": outcome.status.to_dict(),
        "transaction": outcome.transaction.to_dict() if outcome.transaction else None,
        "total_debt": money(store.total_debt(), store),
    }


@app.put("/settings/currency")
async def change_currency(
    payload: CurrencyIn, store: FinanceStore = Depends(current_store)
):
    try:
        result = await store.change_currency(payload.currency)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise_for_result(result)
    return {"currency": store.currency}
