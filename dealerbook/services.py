import logging
import secrets
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from dealerbook import rewards as reward_math
from dealerbook.config import settings
from dealerbook.errors import ConflictError, InsufficientStock, NotFoundError, ValidationFailed
from dealerbook.models import (
    AppSetting,
    Company,
    DailySummary,
    DeletionOtp,
    Employee,
    LedgerEntry,
    Product,
    ReceivableTransaction,
    Reward,
    RewardRule,
    SupplierPayment,
)
from dealerbook.schemas import (
    DailySummaryWrite,
    LedgerItemInput,
    LedgerPaymentCreate,
    LedgerWrite,
    ReceivableCreate,
    RewardLineInput,
    RewardRuleWrite,
    SupplierItemInput,
    SupplierPaymentWrite,
    SupplierReception,
)
from dealerbook.sms import (
    COMMISSION_LABEL,
    DEFAULT_TEMPLATES,
    DUE_LABEL,
    DeliveryReport,
    SmsCredentials,
    SmsGateway,
    SmsNotification,
    bangla_date,
    deliver,
    format_currency,
    render,
)
from dealerbook.units import available_units, to_base_quantity, unit_price

logger = logging.getLogger(__name__)

LEDGER_COUNTER_KEY = "ledger-id-counter"
SMS_SETTINGS_KEY = "sms-settings"
SMS_ENABLED_KEY = "sms-service-enabled"
PROFILE_KEY = "profile-settings"

_EPSILON = 1e-9


def _today() -> date:
    return datetime.now(timezone.utc).date()


# ---------------------------------------------------------------------------
# settings


def get_setting(db: Session, key: str, default=None):
    row = db.get(AppSetting, key)
    if row is None or row.value is None:
        return default
    return row.value


def set_setting(db: Session, key: str, value) -> None:
    row = db.get(AppSetting, key)
    if row is None:
        db.add(AppSetting(key=key, value=value))
    else:
        row.value = value


def sms_enabled(db: Session) -> bool:
    return bool(get_setting(db, SMS_ENABLED_KEY, True))


def sms_credentials(db: Session) -> SmsCredentials:
    value = get_setting(db, SMS_SETTINGS_KEY, {}) or {}
    return SmsCredentials(api_key=value.get("api_key") or "", sender_id=value.get("sender_id") or "")


def business_name(db: Session) -> str:
    return (get_setting(db, PROFILE_KEY, {}) or {}).get("business_name") or ""


def sms_template(db: Session, key: str) -> str:
    return get_setting(db, key) or DEFAULT_TEMPLATES[key]


def _last_ledger_id(db: Session) -> int:
    last = get_setting(db, LEDGER_COUNTER_KEY)
    if last is None:
        last = settings.first_ledger_id - 1
    highest = db.query(func.max(LedgerEntry.id)).scalar()
    return max(int(last), highest or 0)


def peek_ledger_id(db: Session) -> int:
    return _last_ledger_id(db) + 1


def next_ledger_id(db: Session) -> int:
    """Reserve the next ledger number. Numbers of deleted entries are never handed out again."""
    ledger_id = _last_ledger_id(db) + 1
    set_setting(db, LEDGER_COUNTER_KEY, ledger_id)
    return ledger_id


def notify(db: Session, gateway: SmsGateway, notifications: list[SmsNotification]) -> DeliveryReport:
    if not notifications:
        return DeliveryReport()
    if not sms_enabled(db):
        return DeliveryReport(warnings=["sms_skipped_service_disabled"])
    report = deliver(db, gateway, sms_credentials(db), notifications)
    db.commit()
    return report


# ---------------------------------------------------------------------------
# stock


def _products_by_id(db: Session, ids) -> dict:
    ids = {value for value in ids if value is not None}
    if not ids:
        return {}
    return {product.id: product for product in db.query(Product).filter(Product.id.in_(ids)).all()}


def _rewards_by_id(db: Session, ids) -> dict:
    ids = {value for value in ids if value is not None}
    if not ids:
        return {}
    return {reward.id: reward for reward in db.query(Reward).filter(Reward.id.in_(ids)).all()}


def move_stock(db: Session, items: list[dict], damaged_items: list[dict], reward_items: list[dict], sign: int) -> None:
    """Add (sign=1) or take out (sign=-1) the stock a ledger moves.

    Items move by quantity_sold, damaged goods by quantity, both converted to
    the product's base unit; catalogue rewards move by quantity_sold. Lines
    whose product or reward no longer exists are skipped.
    """
    products = _products_by_id(db, [line["product_id"] for line in [*items, *damaged_items]])
    for line in items:
        product = products.get(line["product_id"])
        if product is not None:
            product.quantity += sign * to_base_quantity(product, line["quantity_sold"], line["unit"])
    for line in damaged_items:
        product = products.get(line["product_id"])
        if product is not None:
            product.quantity += sign * to_base_quantity(product, line["quantity"], line["unit"])
    catalogue = _rewards_by_id(db, [line.get("reward_id") for line in reward_items])
    for line in reward_items:
        reward = catalogue.get(line.get("reward_id"))
        if reward is not None:
            reward.quantity += sign * line["quantity_sold"]
    logger.info(
        "stock %s for %d items, %d damaged, %d rewards",
        "restored" if sign > 0 else "deducted",
        len(items),
        len(damaged_items),
        len(reward_items),
    )


def _check_stock(db: Session, items: list[dict], damaged_items: list[dict], reward_demand: dict) -> None:
    products = _products_by_id(db, [line["product_id"] for line in [*items, *damaged_items]])
    required = defaultdict(float)
    for line in items:
        product = products[line["product_id"]]
        required[product.id] += to_base_quantity(product, line["summary_quantity"], line["unit"])
    for line in damaged_items:
        product = products[line["product_id"]]
        required[product.id] += to_base_quantity(product, line["quantity"], line["unit"])
    for product_id, needed in required.items():
        product = products[product_id]
        if needed > product.quantity + _EPSILON:
            raise InsufficientStock(product.name, product.quantity, needed)

    catalogue = _rewards_by_id(db, reward_demand.keys())
    for reward_id, needed in reward_demand.items():
        reward = catalogue[reward_id]
        if needed > reward.quantity + _EPSILON:
            raise InsufficientStock(reward.name, reward.quantity, needed)


def _custom_reward_demand(reward_items: list[dict], quantity_field: str) -> dict:
    demand = defaultdict(float)
    for line in reward_items:
        if line.get("main_product_id") or line.get("reward_id") is None:
            continue
        demand[line["reward_id"]] += line[quantity_field]
    return dict(demand)


# ---------------------------------------------------------------------------
# line items


def _item_lines(db: Session, items: list[LedgerItemInput], summary_only: bool = False) -> list[dict]:
    products = _products_by_id(db, [item.product_id for item in items])
    seen = set()
    lines = []
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            raise ValidationFailed(f"product {item.product_id} not found")
        if item.product_id in seen:
            raise ValidationFailed(f"{product.name} is already on the entry")
        seen.add(item.product_id)
        unit = item.unit or product.quantity_unit
        default_price = unit_price(product, unit, product.round_figure_price)
        price = default_price if item.price_per_unit is None else item.price_per_unit
        returned = 0 if summary_only else item.quantity_returned
        if returned > item.summary_quantity:
            raise ValidationFailed(f"returned quantity of {product.name} cannot exceed the summary quantity")
        sold = item.summary_quantity - returned
        lines.append(
            {
                "product_id": product.id,
                "product_name": product.name,
                "unit": unit,
                "price_per_unit": price,
                "summary_quantity": item.summary_quantity,
                "quantity_returned": returned,
                "quantity_sold": sold,
                "total_price": sold * price,
            }
        )
    return lines


def _damaged_lines(db: Session, items) -> list[dict]:
    products = _products_by_id(db, [item.product_id for item in items])
    lines = []
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            raise ValidationFailed(f"product {item.product_id} not found")
        unit = item.unit or product.quantity_unit
        default_price = unit_price(product, unit, product.purchase_price)
        price = default_price if item.price_per_unit is None else item.price_per_unit
        lines.append(
            {
                "product_id": product.id,
                "product_name": product.name,
                "unit": unit,
                "price_per_unit": price,
                "quantity": item.quantity,
                "total_price": item.quantity * price,
            }
        )
    return lines


def _custom_reward_fields(catalogue: dict, line) -> dict:
    if line.reward_id is not None:
        reward = catalogue.get(line.reward_id)
        if reward is None:
            raise ValidationFailed(f"reward {line.reward_id} not found")
        price = reward.selling_price if line.selling_price is None else line.selling_price
        return {
            "reward_id": reward.id,
            "reward_name": reward.name,
            "unit": reward.unit,
            "price_per_unit": price,
            "purchase_price_per_unit": reward.purchase_price,
        }
    purchase = line.purchase_price or 0
    price = line.selling_price
    if price is None:
        price = reward_math.selling_price(purchase, line.profit_margin or 0)
    if not line.reward_name or not line.unit or price <= 0:
        raise ValidationFailed("a custom reward needs a name, a unit and a price")
    return {
        "reward_id": None,
        "reward_name": line.reward_name,
        "unit": line.unit,
        "price_per_unit": price,
        "purchase_price_per_unit": purchase,
    }


def _ledger_reward_lines(db: Session, inputs: list[RewardLineInput]) -> list[dict]:
    catalogue = _rewards_by_id(db, [line.reward_id for line in inputs])
    products = _products_by_id(db, [line.main_product_id for line in inputs])
    picked = set()
    lines = []
    for line in inputs:
        if line.main_product_id and line.reward_id is None:
            raise ValidationFailed("an edited automatic reward must keep its reward_id")
        fields = _custom_reward_fields(catalogue, line)
        if line.quantity_returned > line.summary_quantity:
            raise ValidationFailed(f"returned quantity of {fields['reward_name']} cannot exceed the summary quantity")
        if line.main_product_id:
            product = products.get(line.main_product_id)
            fields["main_product_id"] = line.main_product_id
            fields["main_product_name"] = product.name if product else ""
        else:
            if line.summary_quantity <= 0:
                raise ValidationFailed(f"quantity of {fields['reward_name']} must be greater than zero")
            if fields["reward_id"] is not None:
                if fields["reward_id"] in picked:
                    raise ValidationFailed(f"{fields['reward_name']} is already on the entry")
                picked.add(fields["reward_id"])
        sold = line.summary_quantity - line.quantity_returned
        fields.update(
            summary_quantity=line.summary_quantity,
            quantity_returned=line.quantity_returned,
            quantity_sold=sold,
            total_price=sold * fields["price_per_unit"],
        )
        lines.append(fields)
    return lines


def _summary_reward_lines(db: Session, inputs) -> list[dict]:
    catalogue = _rewards_by_id(db, [line.reward_id for line in inputs])
    picked = set()
    lines = []
    for line in inputs:
        if line.main_product_id:
            continue
        fields = _custom_reward_fields(catalogue, line)
        if fields["reward_id"] is not None:
            if fields["reward_id"] in picked:
                raise ValidationFailed(f"{fields['reward_name']} is already on the summary")
            picked.add(fields["reward_id"])
        fields.update(quantity=line.quantity, total_price=line.quantity * fields["price_per_unit"])
        lines.append(fields)
    return lines


def ledger_totals(items, damaged_items, reward_items, amount_paid: float, commission: float) -> dict:
    gross = sum(line["total_price"] for line in items)
    rewards_total = sum(line["total_price"] for line in reward_items)
    damaged_total = sum(line["total_price"] for line in damaged_items)
    net = gross + rewards_total - damaged_total
    return {
        "gross_total": gross,
        "rewards_total": rewards_total,
        "damaged_total": damaged_total,
        "total_sale": net,
        "amount_due": net - amount_paid - commission,
    }


def ledger_sale(entry: LedgerEntry) -> float:
    """Sale used for sorting and reports: items plus rewards, before damages."""
    return sum(line["total_price"] for line in entry.items) + sum(
        line["total_price"] for line in entry.reward_items or []
    )


# ---------------------------------------------------------------------------
# ledger


@dataclass
class LedgerDraft:
    fields: dict
    totals: dict
    summary: Optional[DailySummary] = None


def _require_employee(db: Session, employee_id: Optional[int], role: str) -> Optional[Employee]:
    if employee_id is None:
        return None
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise ValidationFailed(f"{role} {employee_id} not found")
    return employee


def _pending_summary(db: Session, summary_id: int) -> DailySummary:
    summary = db.get(DailySummary, summary_id)
    if summary is None:
        raise NotFoundError("daily summary not found")
    if summary.status != "pending":
        raise ConflictError(f"daily summary {summary_id} has already been used")
    return summary


def _seed_from_summary(payload: LedgerWrite, summary: DailySummary) -> LedgerWrite:
    if payload.items:
        return payload
    items = [
        LedgerItemInput(
            product_id=line["product_id"],
            unit=line["unit"],
            summary_quantity=line["summary_quantity"],
            price_per_unit=line["price_per_unit"],
        )
        for line in summary.items
    ]
    reward_items = payload.reward_items or [
        RewardLineInput(
            reward_id=line.get("reward_id"),
            reward_name=line["reward_name"],
            unit=line["unit"],
            purchase_price=line.get("purchase_price_per_unit"),
            selling_price=line["price_per_unit"],
            summary_quantity=line["quantity"],
        )
        for line in summary.reward_items or []
        if not line.get("main_product_id")
    ]
    return payload.model_copy(update={"items": items, "reward_items": reward_items})


def compose_ledger(db: Session, payload: LedgerWrite, defaults=None) -> LedgerDraft:
    """Turn a ledger request into stored line items and totals.

    ``defaults`` (a summary or the entry being edited) fills in market,
    salesperson and date the request leaves out.
    """
    market = payload.market or getattr(defaults, "market", None)
    salesperson_id = payload.salesperson_id or getattr(defaults, "salesperson_id", None)
    entry_date = payload.date or getattr(defaults, "date", None) or _today()
    if not market or salesperson_id is None or not payload.items:
        raise ValidationFailed("select a market and a salesperson and add at least one product")
    _require_employee(db, salesperson_id, "salesperson")
    _require_employee(db, payload.due_assigned_to, "employee")
    _require_employee(db, payload.commission_assigned_to, "employee")

    items = _item_lines(db, payload.items)
    damaged_items = _damaged_lines(db, payload.damaged_items)
    custom = _ledger_reward_lines(db, payload.reward_items)
    calculated = reward_math.automatic_rewards(items, db.query(RewardRule).all(), db.query(Reward).all())
    reward_items = reward_math.reconcile(custom, calculated, payload.modified_reward_ids)
    totals = ledger_totals(items, damaged_items, reward_items, payload.amount_paid, payload.commission)

    fields = {
        "date": entry_date,
        "day": payload.day or entry_date.strftime("%A"),
        "market": market,
        "salesperson_id": salesperson_id,
        "items": items,
        "damaged_items": damaged_items,
        "reward_items": reward_items,
        "modified_reward_ids": list(payload.modified_reward_ids),
        "total_sale": totals["total_sale"],
        "amount_paid": payload.amount_paid,
        "amount_due": totals["amount_due"],
        "due_assigned_to": payload.due_assigned_to,
        "commission": payload.commission,
        "commission_assigned_to": payload.commission_assigned_to,
        "note": payload.note,
    }
    return LedgerDraft(fields=fields, totals=totals)


def employee_balance(db: Session, employee_id: int) -> float:
    rows = (
        db.query(ReceivableTransaction.type, func.sum(ReceivableTransaction.amount))
        .filter(ReceivableTransaction.employee_id == employee_id)
        .group_by(ReceivableTransaction.type)
        .all()
    )
    sums = {kind: total or 0 for kind, total in rows}
    return sums.get("due", 0) - sums.get("payment", 0)


def _ledger_receivables(ledger_id: int, fields: dict) -> list[ReceivableTransaction]:
    lines = []
    if fields["amount_due"] > 0 and fields["due_assigned_to"] is not None:
        lines.append(
            ReceivableTransaction(
                id=f"ledger-due-{ledger_id}",
                ledger_id=ledger_id,
                employee_id=fields["due_assigned_to"],
                date=fields["date"],
                type="due",
                amount=fields["amount_due"],
                note=f"Due from Ledger #{ledger_id}",
            )
        )
    if fields["commission"] > 0 and fields["commission_assigned_to"] is not None:
        lines.append(
            ReceivableTransaction(
                id=f"ledger-commission-{ledger_id}",
                ledger_id=ledger_id,
                employee_id=fields["commission_assigned_to"],
                date=fields["date"],
                type="due",
                amount=fields["commission"],
                note=f"Commission from Ledger #{ledger_id}",
            )
        )
    return lines


def _assignments(fields: dict):
    return (
        ("due", DUE_LABEL, fields["amount_due"], fields["due_assigned_to"]),
        ("commission", COMMISSION_LABEL, fields["commission"], fields["commission_assigned_to"]),
    )


def _new_ledger_notifications(db: Session, fields: dict, ledger_id: int) -> list[SmsNotification]:
    template = sms_template(db, "sms-template-ledger")
    name = business_name(db)
    running = {}
    notifications = []
    for kind, label, amount, employee_id in _assignments(fields):
        if amount <= 0 or employee_id is None:
            continue
        employee = db.get(Employee, employee_id)
        if employee is None or not employee.phone:
            continue
        if employee_id not in running:
            running[employee_id] = employee_balance(db, employee_id)
        running[employee_id] += amount
        message = render(
            template,
            {
                "business_name": name,
                "employee_name": employee.name,
                "date": bangla_date(fields["date"]),
                "ledger_no": ledger_id,
                "new_amount": f"{amount:.2f}",
                "amount_type": label,
                "total_due": f"{running[employee_id]:.2f}",
            },
        )
        notifications.append(
            SmsNotification(employee.id, employee.name, employee.phone, kind, message, amount, total_due=running[employee_id])
        )
    return notifications


def _edit_ledger_notifications(db: Session, old: dict, fields: dict, ledger_id: int) -> list[SmsNotification]:
    template = sms_template(db, "sms-template-edit-ledger")
    name = business_name(db)
    notifications = []
    for (kind, _label, amount, employee_id), (_, _, old_amount, old_employee) in zip(
        _assignments(fields), _assignments(old)
    ):
        if abs(amount - old_amount) < _EPSILON and employee_id == old_employee:
            continue
        if employee_id is None:
            continue
        employee = db.get(Employee, employee_id)
        if employee is None or not employee.phone:
            continue
        message = render(
            template,
            {
                "employee_name": employee.name,
                "ledger_no": ledger_id,
                "amount_type": "Due" if kind == "due" else "Commission",
                "old_amount": format_currency(old_amount),
                "new_amount": format_currency(amount),
                "business_name": name,
            },
        )
        notifications.append(
            SmsNotification(employee.id, employee.name, employee.phone, kind, message, amount, old_amount=old_amount)
        )
    return notifications


def preview_ledger(db: Session, payload: LedgerWrite) -> dict:
    defaults = None
    if payload.summary_id is not None:
        defaults = _pending_summary(db, payload.summary_id)
        payload = _seed_from_summary(payload, defaults)
    draft = compose_ledger(db, payload, defaults)
    fields = draft.fields
    _check_stock(db, fields["items"], fields["damaged_items"], _custom_reward_demand(fields["reward_items"], "summary_quantity"))
    ledger_id = peek_ledger_id(db)
    notifications = _new_ledger_notifications(db, fields, ledger_id) if payload.send_sms else []
    return {
        "ledger_id": ledger_id,
        "entry": fields,
        "totals": draft.totals,
        "notifications": [notification.as_dict() for notification in notifications],
    }


def create_ledger(db: Session, payload: LedgerWrite) -> tuple[LedgerEntry, list[SmsNotification]]:
    summary = None
    if payload.summary_id is not None:
        summary = _pending_summary(db, payload.summary_id)
        payload = _seed_from_summary(payload, summary)
    draft = compose_ledger(db, payload, summary)
    fields = draft.fields
    _check_stock(db, fields["items"], fields["damaged_items"], _custom_reward_demand(fields["reward_items"], "summary_quantity"))

    ledger_id = next_ledger_id(db)
    notifications = _new_ledger_notifications(db, fields, ledger_id) if payload.send_sms else []
    entry = LedgerEntry(id=ledger_id, created_at=datetime.now(timezone.utc), **fields)
    db.add(entry)
    move_stock(db, fields["items"], fields["damaged_items"], fields["reward_items"], -1)
    db.add_all(_ledger_receivables(ledger_id, fields))
    if summary is not None:
        summary.status = "used"
        summary.ledger_id = ledger_id
    db.commit()
    db.refresh(entry)
    logger.info("ledger %s created for %s, total sale %.2f", ledger_id, fields["market"], fields["total_sale"])
    return entry, notifications


def get_ledger(db: Session, ledger_id: int) -> LedgerEntry:
    entry = db.get(LedgerEntry, ledger_id)
    if entry is None:
        raise NotFoundError("ledger entry not found")
    return entry


def update_ledger(db: Session, ledger_id: int, payload: LedgerWrite) -> tuple[LedgerEntry, list[SmsNotification]]:
    entry = get_ledger(db, ledger_id)
    old = {
        "amount_due": entry.amount_due,
        "due_assigned_to": entry.due_assigned_to,
        "commission": entry.commission,
        "commission_assigned_to": entry.commission_assigned_to,
    }
    move_stock(db, entry.items, entry.damaged_items, entry.reward_items, 1)
    draft = compose_ledger(db, payload, entry)
    fields = draft.fields
    _check_stock(db, fields["items"], fields["damaged_items"], _custom_reward_demand(fields["reward_items"], "summary_quantity"))
    move_stock(db, fields["items"], fields["damaged_items"], fields["reward_items"], -1)

    for key, value in fields.items():
        setattr(entry, key, value)
    db.query(ReceivableTransaction).filter(ReceivableTransaction.ledger_id == ledger_id).delete(
        synchronize_session=False
    )
    db.add_all(_ledger_receivables(ledger_id, fields))
    notifications = _edit_ledger_notifications(db, old, fields, ledger_id) if payload.send_sms else []
    db.commit()
    db.refresh(entry)
    logger.info("ledger %s updated, total sale %.2f", ledger_id, entry.total_sale)
    return entry, notifications


def delete_ledger(db: Session, ledger_id: int) -> None:
    entry = get_ledger(db, ledger_id)
    move_stock(db, entry.items, entry.damaged_items, entry.reward_items, 1)
    for summary in db.query(DailySummary).filter(DailySummary.ledger_id == ledger_id).all():
        summary.status = "pending"
        summary.ledger_id = None
    db.query(ReceivableTransaction).filter(ReceivableTransaction.ledger_id == ledger_id).delete(
        synchronize_session=False
    )
    db.delete(entry)
    db.commit()
    logger.info("ledger %s deleted", ledger_id)


def record_ledger_payment(
    db: Session, ledger_id: int, payload: LedgerPaymentCreate
) -> tuple[LedgerEntry, ReceivableTransaction, list[SmsNotification]]:
    entry = get_ledger(db, ledger_id)
    if payload.type == "due":
        outstanding, employee_id, label = entry.amount_due, entry.due_assigned_to, DUE_LABEL
    else:
        outstanding, employee_id, label = entry.commission, entry.commission_assigned_to, COMMISSION_LABEL
    if payload.amount > outstanding + _EPSILON:
        raise ValidationFailed(f"payment cannot exceed the outstanding {payload.type} of {outstanding:.2f}")
    if employee_id is None:
        raise ValidationFailed(f"no employee is assigned to the {payload.type} of ledger #{ledger_id}")

    notifications = []
    employee = db.get(Employee, employee_id)
    if payload.send_sms and employee is not None and employee.phone:
        new_total = employee_balance(db, employee_id) - payload.amount
        message = render(
            sms_template(db, "sms-template-payment"),
            {
                "employee_name": employee.name,
                "payment_amount": format_currency(payload.amount),
                "payment_type": label,
                "ledger_no": ledger_id,
                "new_total_due": format_currency(new_total),
                "business_name": business_name(db),
            },
        )
        notifications.append(
            SmsNotification(employee.id, employee.name, employee.phone, "payment", message, payload.amount, total_due=new_total)
        )

    transaction = ReceivableTransaction(
        id=f"payment-{uuid4().hex}",
        ledger_id=ledger_id,
        employee_id=employee_id,
        date=_today(),
        type="payment",
        amount=payload.amount,
        note=f"Payment for Ledger #{ledger_id} ({payload.type})",
    )
    db.add(transaction)
    entry.amount_paid += payload.amount
    if payload.type == "due":
        entry.amount_due -= payload.amount
    else:
        entry.commission -= payload.amount
    db.commit()
    db.refresh(entry)
    db.refresh(transaction)
    logger.info("payment of %.2f recorded on ledger %s (%s)", payload.amount, ledger_id, payload.type)
    return entry, transaction, notifications


_LEDGER_SORT_KEYS = {
    "id": lambda entry: entry.id,
    "date": lambda entry: (entry.date, entry.id),
    "sale": ledger_sale,
}


def list_ledgers(db: Session, search: Optional[str] = None, sort: str = "id", direction: str = "desc") -> list[LedgerEntry]:
    if sort not in _LEDGER_SORT_KEYS:
        raise ValidationFailed(f"cannot sort by {sort!r}")
    entries = db.query(LedgerEntry).all()
    if search:
        needle = search.strip().lower()
        names = {employee.id: employee.name.lower() for employee in db.query(Employee).all()}
        entries = [
            entry
            for entry in entries
            if needle in str(entry.id)
            or needle in entry.market.lower()
            or needle in names.get(entry.salesperson_id, "")
            or needle in entry.date.isoformat()
            or needle in entry.day.lower()
        ]
    return sorted(entries, key=_LEDGER_SORT_KEYS[sort], reverse=direction == "desc")


# ---------------------------------------------------------------------------
# daily summaries


def compose_summary(db: Session, payload: DailySummaryWrite, defaults=None) -> dict:
    market = payload.market or getattr(defaults, "market", None)
    salesperson_id = payload.salesperson_id or getattr(defaults, "salesperson_id", None)
    entry_date = payload.date or getattr(defaults, "date", None) or _today()
    if not market or salesperson_id is None or not payload.items:
        raise ValidationFailed("select a market and a salesperson and add at least one product")
    _require_employee(db, salesperson_id, "salesperson")

    items = _item_lines(db, payload.items, summary_only=True)
    custom = _summary_reward_lines(db, payload.reward_items)
    calculated = reward_math.automatic_rewards(
        items, db.query(RewardRule).all(), db.query(Reward).all(), for_summary=True
    )
    reward_items = custom + calculated
    _check_stock(db, items, [], _custom_reward_demand(custom, "quantity"))
    return {
        "date": entry_date,
        "day": payload.day or entry_date.strftime("%A"),
        "market": market,
        "salesperson_id": salesperson_id,
        "items": items,
        "reward_items": reward_items,
        "total_sale": sum(line["total_price"] for line in items) + sum(line["total_price"] for line in reward_items),
    }


def create_summary(db: Session, payload: DailySummaryWrite) -> DailySummary:
    summary = DailySummary(status="pending", **compose_summary(db, payload))
    db.add(summary)
    db.commit()
    db.refresh(summary)
    logger.info("daily summary %s created for %s", summary.id, summary.market)
    return summary


def get_summary(db: Session, summary_id: int) -> DailySummary:
    summary = db.get(DailySummary, summary_id)
    if summary is None:
        raise NotFoundError("daily summary not found")
    return summary


def update_summary(db: Session, summary_id: int, payload: DailySummaryWrite) -> DailySummary:
    summary = get_summary(db, summary_id)
    if summary.status != "pending":
        raise ConflictError("only pending summaries can be changed")
    for key, value in compose_summary(db, payload, summary).items():
        setattr(summary, key, value)
    db.commit()
    db.refresh(summary)
    return summary


def delete_summary(db: Session, summary_id: int) -> None:
    summary = get_summary(db, summary_id)
    if summary.status != "pending":
        raise ConflictError("only pending summaries can be deleted")
    db.delete(summary)
    db.commit()


def list_summaries(
    db: Session,
    search: Optional[str] = None,
    market: Optional[str] = None,
    salesperson_id: Optional[int] = None,
    status: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> list[DailySummary]:
    query = db.query(DailySummary)
    if market:
        query = query.filter(DailySummary.market == market)
    if salesperson_id is not None:
        query = query.filter(DailySummary.salesperson_id == salesperson_id)
    if status:
        query = query.filter(DailySummary.status == status)
    if date_from:
        query = query.filter(DailySummary.date >= date_from)
    if date_to:
        query = query.filter(DailySummary.date <= date_to)
    summaries = query.order_by(DailySummary.date.desc(), DailySummary.id.desc()).all()
    if search:
        needle = search.strip().lower()
        names = {employee.id: employee.name.lower() for employee in db.query(Employee).all()}
        summaries = [
            summary
            for summary in summaries
            if needle in str(summary.id)
            or needle in summary.market.lower()
            or needle in names.get(summary.salesperson_id, "")
            or needle in summary.date.isoformat()
            or needle in summary.day.lower()
        ]
    return summaries


# ---------------------------------------------------------------------------
# receivables


def receivable_balances(db: Session) -> dict:
    rows = (
        db.query(ReceivableTransaction.employee_id, ReceivableTransaction.type, func.sum(ReceivableTransaction.amount))
        .group_by(ReceivableTransaction.employee_id, ReceivableTransaction.type)
        .all()
    )
    sums = defaultdict(lambda: {"due": 0.0, "payment": 0.0})
    for employee_id, kind, total in rows:
        sums[employee_id][kind] = total or 0.0
    balances = []
    for employee in db.query(Employee).order_by(Employee.name).all():
        due = sums[employee.id]["due"]
        paid = sums[employee.id]["payment"]
        balances.append(
            {
                "employee_id": employee.id,
                "name": employee.name,
                "phone": employee.phone,
                "total_due": due,
                "total_paid": paid,
                "balance": due - paid,
            }
        )
    totals = {
        "total_due": sum(row["total_due"] for row in balances),
        "total_paid": sum(row["total_paid"] for row in balances),
        "balance": sum(row["balance"] for row in balances),
    }
    return {"employees": balances, "totals": totals}


def transactions_query(
    db: Session, employee_id: Optional[int] = None, date_from: Optional[date] = None, date_to: Optional[date] = None
):
    query = db.query(ReceivableTransaction)
    if employee_id is not None:
        query = query.filter(ReceivableTransaction.employee_id == employee_id)
    if date_from:
        query = query.filter(ReceivableTransaction.date >= date_from)
    if date_to:
        query = query.filter(ReceivableTransaction.date <= date_to)
    return query.order_by(ReceivableTransaction.date.desc(), ReceivableTransaction.id.desc())


def get_employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError("employee not found")
    return employee


def add_manual_transaction(db: Session, payload: ReceivableCreate) -> tuple[ReceivableTransaction, list[SmsNotification]]:
    employee = get_employee(db, payload.employee_id)
    balance = employee_balance(db, employee.id)
    new_total = balance + payload.amount if payload.type == "due" else balance - payload.amount
    notifications = []
    if payload.send_sms and employee.phone:
        message = render(
            sms_template(db, "sms-template-manual-txn"),
            {
                "employee_name": employee.name,
                "transaction_type": "Due" if payload.type == "due" else "Payment",
                "amount": format_currency(payload.amount),
                "total_due": format_currency(new_total),
                "business_name": business_name(db),
            },
        )
        notifications.append(
            SmsNotification(employee.id, employee.name, employee.phone, payload.type, message, payload.amount, total_due=new_total)
        )
    transaction = ReceivableTransaction(
        id=f"manual-{uuid4().hex}",
        employee_id=employee.id,
        date=payload.date or _today(),
        type=payload.type,
        amount=payload.amount,
        note=payload.note or ("Manual Due" if payload.type == "due" else payload.payment_method),
    )
    db.add(transaction)
    db.commit()
    db.refresh(transaction)
    logger.info("manual %s of %.2f recorded for employee %s", payload.type, payload.amount, employee.id)
    return transaction, notifications


def due_reminder(db: Session, employee_id: int) -> list[SmsNotification]:
    employee = get_employee(db, employee_id)
    balance = employee_balance(db, employee.id)
    if balance <= 0:
        raise ValidationFailed(f"{employee.name} has no outstanding due")
    if not employee.phone:
        raise ValidationFailed(f"{employee.name} has no phone number")
    message = render(
        sms_template(db, "sms-template"),
        {
            "business_name": business_name(db),
            "customer_name": employee.name,
            "due_amount": f"{balance:.2f}",
        },
    )
    return [SmsNotification(employee.id, employee.name, employee.phone, "reminder", message, balance, total_due=balance)]


def request_deletion_otp(db: Session, gateway: SmsGateway, subject: str, employee: Employee) -> None:
    """Text a one-time code to ``employee``; the deletion of ``subject`` waits for it."""
    if not employee.phone:
        raise ValidationFailed(f"{employee.name} has no phone number to send the verification code to")
    credentials = sms_credentials(db)
    if not credentials.is_complete:
        raise ValidationFailed("sms settings are missing, the verification code cannot be sent")
    code = str(1000 + secrets.randbelow(9000))
    name = business_name(db)
    message = f"Your verification code is {code}." + (f" -{name}" if name else "")
    result = gateway.send(credentials.api_key, credentials.sender_id, employee.phone, message)
    if not result.success:
        raise ValidationFailed(f"could not send the verification code: {result.message}")
    otp = db.get(DeletionOtp, subject)
    if otp is None:
        db.add(DeletionOtp(subject=subject, code=code, created_at=datetime.now(timezone.utc)))
    else:
        otp.code = code
        otp.created_at = datetime.now(timezone.utc)
    db.commit()
    logger.info("verification code sent for %s", subject)


def confirm_deletion_otp(db: Session, subject: str, code: str) -> None:
    otp = db.get(DeletionOtp, subject)
    if otp is None:
        raise ValidationFailed("request a verification code first")
    if otp.code != code.strip():
        raise ValidationFailed("invalid verification code")
    db.delete(otp)


def get_transaction(db: Session, transaction_id: str) -> ReceivableTransaction:
    transaction = db.get(ReceivableTransaction, transaction_id)
    if transaction is None:
        raise NotFoundError("transaction not found")
    return transaction


def request_transaction_deletion(db: Session, gateway: SmsGateway, transaction_id: str) -> None:
    transaction = get_transaction(db, transaction_id)
    employee = get_employee(db, transaction.employee_id)
    request_deletion_otp(db, gateway, f"receivable:{transaction_id}", employee)


def delete_transaction(db: Session, transaction_id: str, code: str) -> None:
    transaction = get_transaction(db, transaction_id)
    confirm_deletion_otp(db, f"receivable:{transaction_id}", code)
    db.delete(transaction)
    db.commit()
    logger.info("receivable transaction %s deleted", transaction_id)


def request_employee_deletion(db: Session, gateway: SmsGateway, employee_id: int) -> None:
    employee = get_employee(db, employee_id)
    _ensure_employee_unreferenced(db, employee)
    request_deletion_otp(db, gateway, f"employee:{employee_id}", employee)


def delete_employee(db: Session, employee_id: int, code: str) -> None:
    employee = get_employee(db, employee_id)
    _ensure_employee_unreferenced(db, employee)
    confirm_deletion_otp(db, f"employee:{employee_id}", code)
    db.delete(employee)
    db.commit()
    logger.info("employee %s deleted", employee_id)


def _ensure_employee_unreferenced(db: Session, employee: Employee) -> None:
    in_ledger = (
        db.query(LedgerEntry.id)
        .filter(
            (LedgerEntry.salesperson_id == employee.id)
            | (LedgerEntry.due_assigned_to == employee.id)
            | (LedgerEntry.commission_assigned_to == employee.id)
        )
        .first()
    )
    in_summary = db.query(DailySummary.id).filter(DailySummary.salesperson_id == employee.id).first()
    in_receivables = (
        db.query(ReceivableTransaction.id).filter(ReceivableTransaction.employee_id == employee.id).first()
    )
    if in_ledger or in_summary or in_receivables:
        raise ConflictError(f"{employee.name} has ledger or receivable records and cannot be deleted")


# ---------------------------------------------------------------------------
# supplier payments


def _supplier_lines(db: Session, company_name: str, inputs: list[SupplierItemInput]) -> list[dict]:
    products = _products_by_id(db, [item.product_id for item in inputs])
    seen = set()
    lines = []
    for index, item in enumerate(inputs, start=1):
        product = products.get(item.product_id)
        if product is None:
            raise ValidationFailed(f"product {item.product_id} not found")
        if product.company != company_name:
            raise ValidationFailed(f"{product.name} does not belong to {company_name}")
        if item.product_id in seen:
            raise ValidationFailed(f"{product.name} is listed twice")
        seen.add(item.product_id)
        unit = item.unit or product.quantity_unit
        default_price = unit_price(product, unit, product.purchase_price)
        price = default_price if item.price_per_unit is None else item.price_per_unit
        lines.append(
            {
                "id": index,
                "product_id": product.id,
                "product_name": product.name,
                "quantity": item.quantity,
                "unit": unit,
                "price_per_unit": price,
                "total_price": item.quantity * price,
            }
        )
    return lines


def _require_company(db: Session, name: str) -> Company:
    company = db.query(Company).filter(Company.name == name).first()
    if company is None:
        raise ValidationFailed(f"company {name!r} not found")
    return company


def _ordered_lines(db: Session, payload: SupplierPaymentWrite) -> list[dict]:
    _require_company(db, payload.company_name)
    if not payload.items:
        raise ValidationFailed("add at least one product")
    if any(item.quantity <= 0 for item in payload.items):
        raise ValidationFailed("ordered quantities must be greater than zero")
    return _supplier_lines(db, payload.company_name, payload.items)


def create_supplier_payment(db: Session, payload: SupplierPaymentWrite) -> SupplierPayment:
    payment = SupplierPayment(
        company_name=payload.company_name,
        payment_date=payload.payment_date,
        payment_method=payload.payment_method,
        advance_payment=payload.advance_payment,
        items=_ordered_lines(db, payload),
        status="pending",
        note=payload.note,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    logger.info("supplier payment %s created for %s", payment.id, payment.company_name)
    return payment


def get_supplier_payment(db: Session, payment_id: int) -> SupplierPayment:
    payment = db.get(SupplierPayment, payment_id)
    if payment is None:
        raise NotFoundError("supplier payment not found")
    return payment


def update_supplier_payment(db: Session, payment_id: int, payload: SupplierPaymentWrite) -> SupplierPayment:
    payment = get_supplier_payment(db, payment_id)
    payment.items = _ordered_lines(db, payload)
    payment.company_name = payload.company_name
    payment.payment_date = payload.payment_date
    payment.payment_method = payload.payment_method
    payment.advance_payment = payload.advance_payment
    payment.note = payload.note
    db.commit()
    db.refresh(payment)
    return payment


def received_lines(payment: SupplierPayment) -> list[dict]:
    """What arrived once received; the ordered lines while still pending."""
    if payment.actual_received_items is None:
        return payment.items
    return payment.actual_received_items


def received_value(payment: SupplierPayment) -> float:
    return sum(line["total_price"] for line in received_lines(payment))


def _move_supplier_stock(db: Session, lines: list[dict], sign: int) -> None:
    products = _products_by_id(db, [line["product_id"] for line in lines])
    for line in lines:
        product = products.get(line["product_id"])
        if product is not None:
            product.quantity += sign * to_base_quantity(product, line["quantity"], line["unit"])


def supplier_discrepancies(ordered: list[dict], received: list[dict]) -> list[dict]:
    """Per product differences between what was ordered and what arrived."""
    ordered_by_product = {line["product_id"]: line for line in ordered}
    received_by_product = {line["product_id"]: line for line in received}
    product_ids = list(dict.fromkeys([*ordered_by_product, *received_by_product]))
    differences = []
    for product_id in product_ids:
        was_ordered = ordered_by_product.get(product_id)
        arrived = received_by_product.get(product_id)
        ordered_quantity = was_ordered["quantity"] if was_ordered else 0
        received_quantity = arrived["quantity"] if arrived else 0
        if abs(received_quantity - ordered_quantity) < _EPSILON:
            continue
        line = arrived or was_ordered
        differences.append(
            {
                "product_id": product_id,
                "product_name": line["product_name"],
                "unit": line["unit"],
                "ordered_quantity": ordered_quantity,
                "received_quantity": received_quantity,
                "quantity_difference": received_quantity - ordered_quantity,
                "value_difference": (arrived["total_price"] if arrived else 0)
                - (was_ordered["total_price"] if was_ordered else 0),
            }
        )
    return differences


def receive_supplier_payment(db: Session, payment_id: int, payload: SupplierReception) -> dict:
    payment = get_supplier_payment(db, payment_id)
    if payment.status == "received":
        raise ConflictError("this supplier payment has already been received")
    if payload.items is None:
        inputs = [
            SupplierItemInput(
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit=line["unit"],
                price_per_unit=line["price_per_unit"],
            )
            for line in payment.items
        ]
    else:
        inputs = payload.items
    lines = _supplier_lines(db, payment.company_name, inputs)
    _move_supplier_stock(db, lines, 1)
    payment.status = "received"
    payment.received_date = payload.received_date or _today()
    payment.actual_received_items = lines
    db.commit()
    db.refresh(payment)
    value = received_value(payment)
    logger.info("supplier payment %s received, value %.2f", payment.id, value)
    return {
        "payment": payment,
        "discrepancies": supplier_discrepancies(payment.items, lines),
        "received_value": value,
        "balance": payment.advance_payment - value,
    }


def delete_supplier_payment(db: Session, payment_id: int) -> None:
    payment = get_supplier_payment(db, payment_id)
    if payment.status == "received":
        _move_supplier_stock(db, received_lines(payment), -1)
    db.delete(payment)
    db.commit()
    logger.info("supplier payment %s deleted", payment_id)


def supplier_summary(db: Session, company_name: Optional[str] = None) -> dict:
    query = db.query(SupplierPayment)
    if company_name:
        query = query.filter(SupplierPayment.company_name == company_name)
    payments = query.order_by(SupplierPayment.payment_date.desc(), SupplierPayment.id.desc()).all()
    received = [payment for payment in payments if payment.status == "received"]
    received.sort(key=lambda payment: (payment.received_date or payment.payment_date, payment.id), reverse=True)
    return {
        "latest_advance_payment": payments[0].advance_payment if payments else 0,
        "last_received_value": received_value(received[0]) if received else 0,
        "overall_balance": sum(payment.advance_payment - received_value(payment) for payment in received),
        "pending_count": len(payments) - len(received),
    }


# ---------------------------------------------------------------------------
# catalogue guards


def ensure_no_ledgers(db: Session, what: str) -> None:
    if db.query(LedgerEntry.id).first() is not None:
        raise ConflictError(f"{what} cannot be deleted once ledger entries exist")


def ensure_reward_unused(db: Session, reward: Reward) -> None:
    if db.query(RewardRule.id).filter(RewardRule.reward_id == reward.id).first() is not None:
        raise ConflictError(f"{reward.name} is used by a reward rule")


def validate_rule(db: Session, payload: RewardRuleWrite) -> None:
    product = db.get(Product, payload.main_product_id)
    if product is None:
        raise ValidationFailed(f"product {payload.main_product_id} not found")
    if db.get(Reward, payload.reward_id) is None:
        raise ValidationFailed(f"reward {payload.reward_id} not found")
    if payload.main_product_unit not in available_units(product):
        raise ValidationFailed(f"unit {payload.main_product_unit!r} is not valid for product {product.name}")
