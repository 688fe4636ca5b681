from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from dealerbook import reports, services
from dealerbook.config import settings
from dealerbook.db import SessionLocal, check_connection, init_db
from dealerbook.errors import DealerbookError, SmsGatewayError
from dealerbook.models import (
    Company,
    DailySummary,
    Employee,
    LedgerEntry,
    Market,
    Product,
    QuantityUnit,
    ReceivableTransaction,
    Reward,
    RewardRule,
    SmsRecord,
    SupplierPayment,
)
from dealerbook.rewards import selling_price
from dealerbook.schemas import (
    CompanyCreate,
    DailySummaryWrite,
    EmployeeWrite,
    LedgerPaymentCreate,
    LedgerWrite,
    NameCreate,
    OtpConfirm,
    ProductWrite,
    ProfileUpdate,
    ReceivableCreate,
    RewardRuleWrite,
    RewardWrite,
    SmsSettingsUpdate,
    SupplierPaymentWrite,
    SupplierReception,
    TemplateUpdate,
)
from dealerbook.sms import DEFAULT_TEMPLATES, DeliveryReport, SmsGateway
from dealerbook.units import available_units, format_stock

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logging.basicConfig(level=settings.log_level)
    if settings.auto_create_tables:
        init_db()
    yield


app = FastAPI(title="Dealerbook", lifespan=lifespan)


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_sms_gateway() -> SmsGateway:
    return SmsGateway()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _paginate_by_offset(query, limit: int, cursor: Optional[int]) -> tuple[list[Any], Optional[int]]:
    offset = cursor or 0
    rows = query.offset(offset).limit(limit + 1).all()
    next_cursor = None
    if len(rows) > limit:
        next_cursor = offset + limit
        rows = rows[:limit]
    return rows, next_cursor


def _paginate_list(rows: list, limit: int, cursor: Optional[int]) -> tuple[list[Any], Optional[int]]:
    offset = cursor or 0
    page = rows[offset : offset + limit]
    next_cursor = offset + limit if len(rows) > offset + limit else None
    return page, next_cursor


def _list_meta(limit: int, cursor: Optional[int], next_cursor: Optional[int]) -> dict:
    meta = _meta()
    if next_cursor is not None:
        meta["page"] = {"limit": limit, "cursor": str(next_cursor)}
    elif cursor is not None:
        meta["page"] = {"limit": limit, "cursor": str(cursor)}
    else:
        meta["page"] = {"limit": limit, "cursor": None}
    return meta


def _delivery_meta(report: DeliveryReport) -> dict:
    return _meta(warnings=report.warnings)


@app.exception_handler(DealerbookError)
async def handle_domain_error(_: Request, exc: DealerbookError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/", tags=["root"])
def read_root() -> dict:
    return {"status": "ok"}


@app.get("/health", tags=["health"])
def health_check(db: Session = Depends(get_db)) -> dict:
    if not check_connection(db.get_bind()):
        raise HTTPException(status_code=503, detail="database unavailable")
    return {"status": "healthy"}


# ---------------------------------------------------------------------------
# serializers


def _company_out(company: Company) -> dict:
    return {"company_id": company.id, "name": company.name, "profit_margin": company.profit_margin}


def _product_out(product: Product) -> dict:
    return {
        "product_id": product.id,
        "name": product.name,
        "company": product.company,
        "quantity": product.quantity,
        "stock": format_stock(product),
        "purchase_price": product.purchase_price,
        "profit_margin": product.profit_margin,
        "selling_price": product.selling_price,
        "round_figure_price": product.round_figure_price,
        "quantity_unit": product.quantity_unit,
        "larger_unit": product.larger_unit,
        "conversion_factor": product.conversion_factor,
        "units": available_units(product),
        "stock_value": product.quantity * product.purchase_price,
    }


def _employee_out(employee: Employee) -> dict:
    return {
        "employee_id": employee.id,
        "name": employee.name,
        "phone": employee.phone,
        "role": employee.role,
        "daily_salary": employee.daily_salary,
    }


def _reward_out(reward: Reward) -> dict:
    return {
        "reward_id": reward.id,
        "name": reward.name,
        "unit": reward.unit,
        "quantity": reward.quantity,
        "purchase_price": reward.purchase_price,
        "profit_margin": reward.profit_margin,
        "selling_price": reward.selling_price,
    }


def _rule_out(rule: RewardRule) -> dict:
    return {
        "rule_id": rule.id,
        "main_product_id": rule.main_product_id,
        "main_product_quantity": rule.main_product_quantity,
        "main_product_unit": rule.main_product_unit,
        "reward_id": rule.reward_id,
        "reward_quantity": rule.reward_quantity,
    }


def _ledger_out(entry: LedgerEntry) -> dict:
    return {
        "ledger_id": entry.id,
        "date": entry.date.isoformat(),
        "day": entry.day,
        "market": entry.market,
        "salesperson_id": entry.salesperson_id,
        "items": entry.items,
        "damaged_items": entry.damaged_items,
        "reward_items": entry.reward_items,
        "modified_reward_ids": entry.modified_reward_ids,
        "total_sale": entry.total_sale,
        "amount_paid": entry.amount_paid,
        "amount_due": entry.amount_due,
        "due_assigned_to": entry.due_assigned_to,
        "commission": entry.commission,
        "commission_assigned_to": entry.commission_assigned_to,
        "note": entry.note,
    }


def _summary_out(summary: DailySummary) -> dict:
    return {
        "summary_id": summary.id,
        "date": summary.date.isoformat(),
        "day": summary.day,
        "market": summary.market,
        "salesperson_id": summary.salesperson_id,
        "items": summary.items,
        "reward_items": summary.reward_items,
        "total_sale": summary.total_sale,
        "status": summary.status,
        "ledger_id": summary.ledger_id,
    }


def _transaction_out(transaction: ReceivableTransaction) -> dict:
    return {
        "transaction_id": transaction.id,
        "ledger_id": transaction.ledger_id,
        "employee_id": transaction.employee_id,
        "date": transaction.date.isoformat(),
        "type": transaction.type,
        "amount": transaction.amount,
        "note": transaction.note,
    }


def _supplier_payment_out(payment: SupplierPayment) -> dict:
    return {
        "supplier_payment_id": payment.id,
        "company_name": payment.company_name,
        "payment_date": payment.payment_date.isoformat(),
        "payment_method": payment.payment_method,
        "advance_payment": payment.advance_payment,
        "items": payment.items,
        "status": payment.status,
        "received_date": payment.received_date.isoformat() if payment.received_date else None,
        "note": payment.note,
        "actual_received_items": payment.actual_received_items,
    }


def _sms_record_out(record: SmsRecord) -> dict:
    return {
        "sms_id": record.id,
        "sent_at": record.sent_at.isoformat(),
        "recipient_name": record.recipient_name,
        "recipient_phone": record.recipient_phone,
        "message": record.message,
        "status": record.status,
        "status_message": record.status_message,
        "sms_count": record.sms_count,
    }


# ---------------------------------------------------------------------------
# companies, quantity units, markets


@app.post("/api/v1/companies", tags=["Companies"])
def create_company(payload: CompanyCreate, db: Session = Depends(get_db)) -> dict:
    if db.query(Company).filter(Company.name == payload.name).first():
        raise HTTPException(status_code=409, detail="company already exists")
    company = Company(name=payload.name, profit_margin=payload.profit_margin)
    db.add(company)
    db.commit()
    db.refresh(company)
    return {"data": _company_out(company), "meta": _meta()}


@app.get("/api/v1/companies", tags=["Companies"])
def list_companies(db: Session = Depends(get_db)) -> dict:
    companies = db.query(Company).order_by(Company.name).all()
    return {"data": [_company_out(company) for company in companies], "meta": _meta()}


@app.delete("/api/v1/companies/{company_id}", tags=["Companies"])
def delete_company(company_id: int, db: Session = Depends(get_db)) -> dict:
    company = db.get(Company, company_id)
    if not company:
        raise HTTPException(status_code=404, detail="company not found")
    services.ensure_no_ledgers(db, "companies")
    db.delete(company)
    db.commit()
    return {"data": {"company_id": company_id, "deleted": True}, "meta": _meta()}


@app.post("/api/v1/quantity-units", tags=["Quantity Units"])
def create_quantity_unit(payload: NameCreate, db: Session = Depends(get_db)) -> dict:
    if db.query(QuantityUnit).filter(QuantityUnit.name == payload.name).first():
        raise HTTPException(status_code=409, detail="quantity unit already exists")
    unit = QuantityUnit(name=payload.name)
    db.add(unit)
    db.commit()
    db.refresh(unit)
    return {"data": {"quantity_unit_id": unit.id, "name": unit.name}, "meta": _meta()}


@app.get("/api/v1/quantity-units", tags=["Quantity Units"])
def list_quantity_units(db: Session = Depends(get_db)) -> dict:
    units = db.query(QuantityUnit).order_by(QuantityUnit.name).all()
    return {"data": [{"quantity_unit_id": unit.id, "name": unit.name} for unit in units], "meta": _meta()}


@app.delete("/api/v1/quantity-units/{quantity_unit_id}", tags=["Quantity Units"])
def delete_quantity_unit(quantity_unit_id: int, db: Session = Depends(get_db)) -> dict:
    unit = db.get(QuantityUnit, quantity_unit_id)
    if not unit:
        raise HTTPException(status_code=404, detail="quantity unit not found")
    services.ensure_no_ledgers(db, "quantity units")
    db.delete(unit)
    db.commit()
    return {"data": {"quantity_unit_id": quantity_unit_id, "deleted": True}, "meta": _meta()}


@app.post("/api/v1/markets", tags=["Markets"])
def create_market(payload: NameCreate, db: Session = Depends(get_db)) -> dict:
    if db.query(Market).filter(Market.name == payload.name).first():
        raise HTTPException(status_code=409, detail="market already exists")
    market = Market(name=payload.name)
    db.add(market)
    db.commit()
    db.refresh(market)
    return {"data": {"market_id": market.id, "name": market.name}, "meta": _meta()}


@app.get("/api/v1/markets", tags=["Markets"])
def list_markets(db: Session = Depends(get_db)) -> dict:
    markets = db.query(Market).order_by(Market.name).all()
    return {"data": [{"market_id": market.id, "name": market.name} for market in markets], "meta": _meta()}


@app.delete("/api/v1/markets/{market_id}", tags=["Markets"])
def delete_market(market_id: int, db: Session = Depends(get_db)) -> dict:
    market = db.get(Market, market_id)
    if not market:
        raise HTTPException(status_code=404, detail="market not found")
    services.ensure_no_ledgers(db, "markets")
    db.delete(market)
    db.commit()
    return {"data": {"market_id": market_id, "deleted": True}, "meta": _meta()}


# ---------------------------------------------------------------------------
# products


def _apply_product(product: Product, payload: ProductWrite, db: Session) -> None:
    if not db.query(Company).filter(Company.name == payload.company).first():
        raise HTTPException(status_code=400, detail=f"company {payload.company!r} not found")
    if payload.larger_unit and not payload.conversion_factor:
        raise HTTPException(status_code=400, detail="a second unit needs a conversion factor")
    price = selling_price(payload.purchase_price, payload.profit_margin)
    product.name = payload.name
    product.company = payload.company
    product.purchase_price = payload.purchase_price
    product.profit_margin = payload.profit_margin
    product.selling_price = price
    product.round_figure_price = price if payload.round_figure_price is None else payload.round_figure_price
    product.quantity = payload.quantity
    product.quantity_unit = payload.quantity_unit
    product.larger_unit = payload.larger_unit or None
    product.conversion_factor = payload.conversion_factor if payload.larger_unit else None


@app.post("/api/v1/products", tags=["Products"])
def create_product(payload: ProductWrite, db: Session = Depends(get_db)) -> dict:
    product = Product()
    _apply_product(product, payload, db)
    db.add(product)
    db.commit()
    db.refresh(product)
    return {"data": _product_out(product), "meta": _meta()}


@app.get("/api/v1/products/{product_id}", tags=["Products"])
def get_product(product_id: int, db: Session = Depends(get_db)) -> dict:
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="product not found")
    return {"data": _product_out(product), "meta": _meta()}


@app.get("/api/v1/products", tags=["Products"])
def list_products(
    company: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Product)
    if company is not None:
        query = query.filter(Product.company == company)
    if search:
        query = query.filter(Product.name.ilike(f"%{search}%"))
    products, next_cursor = _paginate_by_offset(query.order_by(Product.name, Product.id), limit, cursor)
    return {"data": [_product_out(product) for product in products], "meta": _list_meta(limit, cursor, next_cursor)}


@app.put("/api/v1/products/{product_id}", tags=["Products"])
def update_product(product_id: int, payload: ProductWrite, db: Session = Depends(get_db)) -> dict:
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="product not found")
    _apply_product(product, payload, db)
    db.commit()
    db.refresh(product)
    return {"data": _product_out(product), "meta": _meta()}


@app.delete("/api/v1/products/{product_id}", tags=["Products"])
def delete_product(product_id: int, db: Session = Depends(get_db)) -> dict:
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="product not found")
    services.ensure_no_ledgers(db, "products")
    db.query(RewardRule).filter(RewardRule.main_product_id == product_id).delete(synchronize_session=False)
    db.delete(product)
    db.commit()
    return {"data": {"product_id": product_id, "deleted": True}, "meta": _meta()}


# ---------------------------------------------------------------------------
# employees


@app.post("/api/v1/employees", tags=["Employees"])
def create_employee(payload: EmployeeWrite, db: Session = Depends(get_db)) -> dict:
    employee = Employee(**payload.model_dump())
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return {"data": _employee_out(employee), "meta": _meta()}


@app.get("/api/v1/employees/{employee_id}", tags=["Employees"])
def get_employee(employee_id: int, db: Session = Depends(get_db)) -> dict:
    employee = services.get_employee(db, employee_id)
    return {
        "data": {**_employee_out(employee), "balance": services.employee_balance(db, employee.id)},
        "meta": _meta(),
    }


@app.get("/api/v1/employees", tags=["Employees"])
def list_employees(db: Session = Depends(get_db)) -> dict:
    employees = db.query(Employee).order_by(Employee.name).all()
    return {"data": [_employee_out(employee) for employee in employees], "meta": _meta()}


@app.put("/api/v1/employees/{employee_id}", tags=["Employees"])
def update_employee(employee_id: int, payload: EmployeeWrite, db: Session = Depends(get_db)) -> dict:
    employee = services.get_employee(db, employee_id)
    for key, value in payload.model_dump().items():
        setattr(employee, key, value)
    db.commit()
    db.refresh(employee)
    return {"data": _employee_out(employee), "meta": _meta()}


@app.post("/api/v1/employees/{employee_id}:requestDeletion", tags=["Employees"])
def request_employee_deletion(
    employee_id: int,
    db: Session = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    services.request_employee_deletion(db, gateway, employee_id)
    return {"data": {"employee_id": employee_id, "otp_sent": True}, "meta": _meta()}


@app.post("/api/v1/employees/{employee_id}:confirmDeletion", tags=["Employees"])
def confirm_employee_deletion(employee_id: int, payload: OtpConfirm, db: Session = Depends(get_db)) -> dict:
    services.delete_employee(db, employee_id, payload.code)
    return {"data": {"employee_id": employee_id, "deleted": True}, "meta": _meta()}


@app.post("/api/v1/employees/{employee_id}:sendDueReminder", tags=["Receivables"])
def send_due_reminder(
    employee_id: int,
    db: Session = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    report = services.notify(db, gateway, services.due_reminder(db, employee_id))
    return {"data": {"employee_id": employee_id, "sms": report.sent}, "meta": _delivery_meta(report)}


# ---------------------------------------------------------------------------
# rewards and reward rules


def _apply_reward(reward: Reward, payload: RewardWrite) -> None:
    reward.name = payload.name
    reward.unit = payload.unit
    reward.quantity = payload.quantity
    reward.purchase_price = payload.purchase_price
    reward.profit_margin = payload.profit_margin
    reward.selling_price = selling_price(payload.purchase_price, payload.profit_margin)


@app.post("/api/v1/rewards", tags=["Rewards"])
def create_reward(payload: RewardWrite, db: Session = Depends(get_db)) -> dict:
    reward = Reward()
    _apply_reward(reward, payload)
    db.add(reward)
    db.commit()
    db.refresh(reward)
    return {"data": _reward_out(reward), "meta": _meta()}


@app.get("/api/v1/rewards", tags=["Rewards"])
def list_rewards(db: Session = Depends(get_db)) -> dict:
    rewards = db.query(Reward).order_by(Reward.name).all()
    return {"data": [_reward_out(reward) for reward in rewards], "meta": _meta()}


@app.put("/api/v1/rewards/{reward_id}", tags=["Rewards"])
def update_reward(reward_id: int, payload: RewardWrite, db: Session = Depends(get_db)) -> dict:
    reward = db.get(Reward, reward_id)
    if not reward:
        raise HTTPException(status_code=404, detail="reward not found")
    _apply_reward(reward, payload)
    db.commit()
    db.refresh(reward)
    return {"data": _reward_out(reward), "meta": _meta()}


@app.delete("/api/v1/rewards/{reward_id}", tags=["Rewards"])
def delete_reward(reward_id: int, db: Session = Depends(get_db)) -> dict:
    reward = db.get(Reward, reward_id)
    if not reward:
        raise HTTPException(status_code=404, detail="reward not found")
    services.ensure_reward_unused(db, reward)
    db.delete(reward)
    db.commit()
    return {"data": {"reward_id": reward_id, "deleted": True}, "meta": _meta()}


@app.post("/api/v1/reward-rules", tags=["Reward Rules"])
def create_reward_rule(payload: RewardRuleWrite, db: Session = Depends(get_db)) -> dict:
    services.validate_rule(db, payload)
    rule = RewardRule(**payload.model_dump())
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return {"data": _rule_out(rule), "meta": _meta()}


@app.get("/api/v1/reward-rules", tags=["Reward Rules"])
def list_reward_rules(db: Session = Depends(get_db)) -> dict:
    rules = db.query(RewardRule).order_by(RewardRule.id).all()
    return {"data": [_rule_out(rule) for rule in rules], "meta": _meta()}


@app.put("/api/v1/reward-rules/{rule_id}", tags=["Reward Rules"])
def update_reward_rule(rule_id: int, payload: RewardRuleWrite, db: Session = Depends(get_db)) -> dict:
    rule = db.get(RewardRule, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="reward rule not found")
    services.validate_rule(db, payload)
    for key, value in payload.model_dump().items():
        setattr(rule, key, value)
    db.commit()
    db.refresh(rule)
    return {"data": _rule_out(rule), "meta": _meta()}


@app.delete("/api/v1/reward-rules/{rule_id}", tags=["Reward Rules"])
def delete_reward_rule(rule_id: int, db: Session = Depends(get_db)) -> dict:
    rule = db.get(RewardRule, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="reward rule not found")
    db.delete(rule)
    db.commit()
    return {"data": {"rule_id": rule_id, "deleted": True}, "meta": _meta()}


# ---------------------------------------------------------------------------
# ledger


@app.post("/api/v1/ledger-entries:preview", tags=["Ledger"])
def preview_ledger_entry(payload: LedgerWrite, db: Session = Depends(get_db)) -> dict:
    return {"data": services.preview_ledger(db, payload), "meta": _meta()}


@app.post("/api/v1/ledger-entries", tags=["Ledger"])
def create_ledger_entry(
    payload: LedgerWrite,
    db: Session = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    entry, notifications = services.create_ledger(db, payload)
    report = services.notify(db, gateway, notifications)
    return {"data": {**_ledger_out(entry), "sms": report.sent}, "meta": _delivery_meta(report)}


@app.get("/api/v1/ledger-entries/{ledger_id}", tags=["Ledger"])
def get_ledger_entry(ledger_id: int, db: Session = Depends(get_db)) -> dict:
    return {"data": _ledger_out(services.get_ledger(db, ledger_id)), "meta": _meta()}


@app.get("/api/v1/ledger-entries", tags=["Ledger"])
def list_ledger_entries(
    search: Optional[str] = Query(default=None),
    sort: str = Query(default="id"),
    direction: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    entries = services.list_ledgers(db, search, sort, direction)
    page, next_cursor = _paginate_list(entries, limit, cursor)
    return {"data": [_ledger_out(entry) for entry in page], "meta": _list_meta(limit, cursor, next_cursor)}


@app.put("/api/v1/ledger-entries/{ledger_id}", tags=["Ledger"])
def update_ledger_entry(
    ledger_id: int,
    payload: LedgerWrite,
    db: Session = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    entry, notifications = services.update_ledger(db, ledger_id, payload)
    report = services.notify(db, gateway, notifications)
    return {"data": {**_ledger_out(entry), "sms": report.sent}, "meta": _delivery_meta(report)}


@app.delete("/api/v1/ledger-entries/{ledger_id}", tags=["Ledger"])
def delete_ledger_entry(ledger_id: int, db: Session = Depends(get_db)) -> dict:
    services.delete_ledger(db, ledger_id)
    return {"data": {"ledger_id": ledger_id, "deleted": True}, "meta": _meta()}


@app.post("/api/v1/ledger-entries/{ledger_id}/payments", tags=["Ledger"])
def record_ledger_payment(
    ledger_id: int,
    payload: LedgerPaymentCreate,
    db: Session = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    entry, transaction, notifications = services.record_ledger_payment(db, ledger_id, payload)
    report = services.notify(db, gateway, notifications)
    return {
        "data": {"ledger": _ledger_out(entry), "transaction": _transaction_out(transaction), "sms": report.sent},
        "meta": _delivery_meta(report),
    }


# ---------------------------------------------------------------------------
# daily summaries


@app.post("/api/v1/daily-summaries", tags=["Daily Summaries"])
def create_daily_summary(payload: DailySummaryWrite, db: Session = Depends(get_db)) -> dict:
    return {"data": _summary_out(services.create_summary(db, payload)), "meta": _meta()}


@app.get("/api/v1/daily-summaries:pending", tags=["Daily Summaries"])
def list_pending_summaries(db: Session = Depends(get_db)) -> dict:
    summaries = services.list_summaries(db, status="pending")
    return {"data": [_summary_out(summary) for summary in summaries], "meta": _meta()}


@app.get("/api/v1/daily-summaries/{summary_id}", tags=["Daily Summaries"])
def get_daily_summary(summary_id: int, db: Session = Depends(get_db)) -> dict:
    return {"data": _summary_out(services.get_summary(db, summary_id)), "meta": _meta()}


@app.get("/api/v1/daily-summaries", tags=["Daily Summaries"])
def list_daily_summaries(
    search: Optional[str] = Query(default=None),
    market: Optional[str] = Query(default=None),
    salesperson_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None, pattern="^(pending|used)$"),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    summaries = services.list_summaries(db, search, market, salesperson_id, status, date_from, date_to)
    page, next_cursor = _paginate_list(summaries, limit, cursor)
    return {"data": [_summary_out(summary) for summary in page], "meta": _list_meta(limit, cursor, next_cursor)}


@app.put("/api/v1/daily-summaries/{summary_id}", tags=["Daily Summaries"])
def update_daily_summary(summary_id: int, payload: DailySummaryWrite, db: Session = Depends(get_db)) -> dict:
    return {"data": _summary_out(services.update_summary(db, summary_id, payload)), "meta": _meta()}


@app.delete("/api/v1/daily-summaries/{summary_id}", tags=["Daily Summaries"])
def delete_daily_summary(summary_id: int, db: Session = Depends(get_db)) -> dict:
    services.delete_summary(db, summary_id)
    return {"data": {"summary_id": summary_id, "deleted": True}, "meta": _meta()}


# ---------------------------------------------------------------------------
# receivables


@app.get("/api/v1/receivables/balances", tags=["Receivables"])
def get_receivable_balances(db: Session = Depends(get_db)) -> dict:
    return {"data": services.receivable_balances(db), "meta": _meta()}


@app.get("/api/v1/receivables/transactions", tags=["Receivables"])
def list_receivable_transactions(
    employee_id: Optional[int] = Query(default=None),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = services.transactions_query(db, employee_id, date_from, date_to)
    transactions, next_cursor = _paginate_by_offset(query, limit, cursor)
    return {
        "data": [_transaction_out(transaction) for transaction in transactions],
        "meta": _list_meta(limit, cursor, next_cursor),
    }


@app.post("/api/v1/receivables/transactions", tags=["Receivables"])
def create_receivable_transaction(
    payload: ReceivableCreate,
    db: Session = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    transaction, notifications = services.add_manual_transaction(db, payload)
    report = services.notify(db, gateway, notifications)
    return {"data": {**_transaction_out(transaction), "sms": report.sent}, "meta": _delivery_meta(report)}


@app.post("/api/v1/receivables/transactions/{transaction_id}:requestDeletion", tags=["Receivables"])
def request_transaction_deletion(
    transaction_id: str,
    db: Session = Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> dict:
    services.request_transaction_deletion(db, gateway, transaction_id)
    return {"data": {"transaction_id": transaction_id, "otp_sent": True}, "meta": _meta()}


@app.post("/api/v1/receivables/transactions/{transaction_id}:confirmDeletion", tags=["Receivables"])
def confirm_transaction_deletion(transaction_id: str, payload: OtpConfirm, db: Session = Depends(get_db)) -> dict:
    services.delete_transaction(db, transaction_id, payload.code)
    return {"data": {"transaction_id": transaction_id, "deleted": True}, "meta": _meta()}


# ---------------------------------------------------------------------------
# supplier payments


@app.post("/api/v1/supplier-payments", tags=["Supplier Payments"])
def create_supplier_payment(payload: SupplierPaymentWrite, db: Session = Depends(get_db)) -> dict:
    payment = services.create_supplier_payment(db, payload)
    return {"data": _supplier_payment_out(payment), "meta": _meta()}


@app.get("/api/v1/supplier-payments:summary", tags=["Supplier Payments"])
def get_supplier_summary(
    company_name: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    return {"data": services.supplier_summary(db, company_name), "meta": _meta()}


@app.get("/api/v1/supplier-payments/{payment_id}", tags=["Supplier Payments"])
def get_supplier_payment(payment_id: int, db: Session = Depends(get_db)) -> dict:
    payment = services.get_supplier_payment(db, payment_id)
    data = _supplier_payment_out(payment)
    if payment.status == "received":
        data["discrepancies"] = services.supplier_discrepancies(payment.items, services.received_lines(payment))
        data["balance"] = payment.advance_payment - services.received_value(payment)
    return {"data": data, "meta": _meta()}


@app.get("/api/v1/supplier-payments", tags=["Supplier Payments"])
def list_supplier_payments(
    company_name: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None, pattern="^(pending|received)$"),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(SupplierPayment)
    if company_name is not None:
        query = query.filter(SupplierPayment.company_name == company_name)
    if status is not None:
        query = query.filter(SupplierPayment.status == status)
    query = query.order_by(SupplierPayment.payment_date.desc(), SupplierPayment.id.desc())
    payments, next_cursor = _paginate_by_offset(query, limit, cursor)
    return {
        "data": [_supplier_payment_out(payment) for payment in payments],
        "meta": _list_meta(limit, cursor, next_cursor),
    }


@app.put("/api/v1/supplier-payments/{payment_id}", tags=["Supplier Payments"])
def update_supplier_payment(payment_id: int, payload: SupplierPaymentWrite, db: Session = Depends(get_db)) -> dict:
    payment = services.update_supplier_payment(db, payment_id, payload)
    return {"data": _supplier_payment_out(payment), "meta": _meta()}


@app.post("/api/v1/supplier-payments/{payment_id}:receive", tags=["Supplier Payments"])
def receive_supplier_payment(payment_id: int, payload: SupplierReception, db: Session = Depends(get_db)) -> dict:
    result = services.receive_supplier_payment(db, payment_id, payload)
    return {
        "data": {
            **_supplier_payment_out(result["payment"]),
            "discrepancies": result["discrepancies"],
            "received_value": result["received_value"],
            "balance": result["balance"],
        },
        "meta": _meta(),
    }


@app.delete("/api/v1/supplier-payments/{payment_id}", tags=["Supplier Payments"])
def delete_supplier_payment(payment_id: int, db: Session = Depends(get_db)) -> dict:
    services.delete_supplier_payment(db, payment_id)
    return {"data": {"supplier_payment_id": payment_id, "deleted": True}, "meta": _meta()}


# ---------------------------------------------------------------------------
# sms


@app.get("/api/v1/sms/history", tags=["SMS"])
def list_sms_history(
    limit: int = Query(default=50, ge=1, le=200),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(SmsRecord).order_by(SmsRecord.sent_at.desc(), SmsRecord.id.desc())
    records, next_cursor = _paginate_by_offset(query, limit, cursor)
    return {"data": [_sms_record_out(record) for record in records], "meta": _list_meta(limit, cursor, next_cursor)}


@app.get("/api/v1/sms/balance", tags=["SMS"])
def get_sms_balance(db: Session = Depends(get_db), gateway: SmsGateway = Depends(get_sms_gateway)) -> dict:
    credentials = services.sms_credentials(db)
    if not credentials.api_key:
        raise HTTPException(status_code=400, detail="sms api key is not configured")
    try:
        balance = gateway.balance(credentials.api_key)
    except SmsGatewayError as exc:
        logger.warning("sms balance lookup failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"data": {"balance": balance}, "meta": _meta()}


@app.post("/api/v1/sms:sendDueReminders", tags=["SMS"])
def send_due_reminders(db: Session = Depends(get_db), gateway: SmsGateway = Depends(get_sms_gateway)) -> dict:
    notifications = []
    for row in services.receivable_balances(db)["employees"]:
        if row["balance"] > 0 and row["phone"]:
            notifications.extend(services.due_reminder(db, row["employee_id"]))
    report = services.notify(db, gateway, notifications)
    return {"data": {"sms": report.sent}, "meta": _delivery_meta(report)}


# ---------------------------------------------------------------------------
# settings


@app.get("/api/v1/settings/profile", tags=["Settings"])
def get_profile(db: Session = Depends(get_db)) -> dict:
    return {"data": {"business_name": services.business_name(db)}, "meta": _meta()}


@app.put("/api/v1/settings/profile", tags=["Settings"])
def update_profile(payload: ProfileUpdate, db: Session = Depends(get_db)) -> dict:
    services.set_setting(db, services.PROFILE_KEY, payload.model_dump())
    db.commit()
    return {"data": payload.model_dump(), "meta": _meta()}


def _sms_settings_out(db: Session) -> dict:
    credentials = services.sms_credentials(db)
    return {
        "api_key": credentials.api_key,
        "sender_id": credentials.sender_id,
        "enabled": services.sms_enabled(db),
        "configured": credentials.is_complete,
    }


@app.get("/api/v1/settings/sms", tags=["Settings"])
def get_sms_settings(db: Session = Depends(get_db)) -> dict:
    return {"data": _sms_settings_out(db), "meta": _meta()}


@app.put("/api/v1/settings/sms", tags=["Settings"])
def update_sms_settings(payload: SmsSettingsUpdate, db: Session = Depends(get_db)) -> dict:
    credentials = services.sms_credentials(db)
    services.set_setting(
        db,
        services.SMS_SETTINGS_KEY,
        {
            "api_key": credentials.api_key if payload.api_key is None else payload.api_key,
            "sender_id": credentials.sender_id if payload.sender_id is None else payload.sender_id,
        },
    )
    if payload.enabled is not None:
        services.set_setting(db, services.SMS_ENABLED_KEY, payload.enabled)
    db.commit()
    return {"data": _sms_settings_out(db), "meta": _meta()}


@app.get("/api/v1/settings/sms-templates", tags=["Settings"])
def list_sms_templates(db: Session = Depends(get_db)) -> dict:
    data = [
        {"key": key, "template": services.sms_template(db, key), "is_default": services.get_setting(db, key) is None}
        for key in DEFAULT_TEMPLATES
    ]
    return {"data": data, "meta": _meta()}


@app.put("/api/v1/settings/sms-templates/{key}", tags=["Settings"])
def update_sms_template(key: str, payload: TemplateUpdate, db: Session = Depends(get_db)) -> dict:
    if key not in DEFAULT_TEMPLATES:
        raise HTTPException(status_code=404, detail="sms template not found")
    services.set_setting(db, key, payload.template)
    db.commit()
    return {"data": {"key": key, "template": payload.template, "is_default": False}, "meta": _meta()}


# ---------------------------------------------------------------------------
# reports


@app.get("/api/v1/reports/damaged-products", tags=["Reports"])
def get_damaged_products(
    company: Optional[str] = Query(default=None),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    return {"data": reports.damaged_products(db, company, date_from, date_to), "meta": _meta()}


@app.get("/api/v1/reports/monthly-sales", tags=["Reports"])
def get_monthly_sales(
    company: Optional[str] = Query(default=None),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    return {"data": reports.monthly_sales(db, company, date_from, date_to), "meta": _meta()}


@app.get("/api/v1/reports/dashboard", tags=["Reports"])
def get_dashboard(
    on: Optional[date] = Query(default=None),
    company: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    return {"data": reports.dashboard(db, on or _now().date(), company), "meta": _meta()}
