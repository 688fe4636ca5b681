"""Read-only reports built from ledger entries and the product catalogue."""
from collections import defaultdict
from datetime import date, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from dealerbook.models import Company, DailySummary, Employee, LedgerEntry, Product, Reward
from dealerbook.units import format_stock, to_base_quantity


def _ledgers_between(db: Session, date_from: Optional[date], date_to: Optional[date]) -> list[LedgerEntry]:
    query = db.query(LedgerEntry)
    if date_from:
        query = query.filter(LedgerEntry.date >= date_from)
    if date_to:
        query = query.filter(LedgerEntry.date <= date_to)
    return query.order_by(LedgerEntry.date.desc(), LedgerEntry.id.desc()).all()


def damaged_products(
    db: Session,
    company: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> dict:
    products = {product.id: product for product in db.query(Product).all()}
    rows = []
    for entry in _ledgers_between(db, date_from, date_to):
        for line in entry.damaged_items or []:
            product = products.get(line["product_id"])
            company_name = product.company if product else ""
            if company and company_name != company:
                continue
            rows.append(
                {
                    "ledger_id": entry.id,
                    "date": entry.date.isoformat(),
                    "market": entry.market,
                    "company": company_name,
                    "product_id": line["product_id"],
                    "product_name": line["product_name"],
                    "unit": line["unit"],
                    "quantity": line["quantity"],
                    "price_per_unit": line["price_per_unit"],
                    "total_price": line["total_price"],
                }
            )
    return {"items": rows, "total_value": sum(row["total_price"] for row in rows)}


def monthly_sales(
    db: Session,
    company: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> dict:
    """Sales per ledger and company, against what the sold goods cost."""
    products = {product.id: product for product in db.query(Product).all()}
    margins = {row.name: row.profit_margin for row in db.query(Company).all()}
    rows = []
    for entry in _ledgers_between(db, date_from, date_to):
        by_company = defaultdict(lambda: {"sale_value": 0.0, "purchase_cost": 0.0})
        for line in entry.items:
            product = products.get(line["product_id"])
            if product is None:
                continue
            cost = to_base_quantity(product, line["quantity_sold"], line["unit"]) * product.purchase_price
            by_company[product.company]["sale_value"] += line["total_price"]
            by_company[product.company]["purchase_cost"] += cost
        for company_name, sums in by_company.items():
            if company and company_name != company:
                continue
            rows.append(
                {
                    "ledger_id": entry.id,
                    "date": entry.date.isoformat(),
                    "day": entry.day,
                    "company": company_name,
                    "sale_value": sums["sale_value"],
                    "purchase_cost": sums["purchase_cost"],
                    "profit": sums["sale_value"] - sums["purchase_cost"],
                    "company_profit_margin": margins.get(company_name, 0),
                }
            )

    companies = defaultdict(lambda: {"sale_value": 0.0, "purchase_cost": 0.0, "sales": []})
    for row in rows:
        companies[row["company"]]["sale_value"] += row["sale_value"]
        companies[row["company"]]["purchase_cost"] += row["purchase_cost"]
        companies[row["company"]]["sales"].append(row)
    summaries = [
        {"company": name, **companies[name], "profit": companies[name]["sale_value"] - companies[name]["purchase_cost"]}
        for name in sorted(companies)
    ]
    sale_value = sum(row["sale_value"] for row in rows)
    purchase_cost = sum(row["purchase_cost"] for row in rows)
    return {
        "companies": summaries,
        "totals": {"sale_value": sale_value, "purchase_cost": purchase_cost, "profit": sale_value - purchase_cost},
    }


def _month_start(day: date) -> date:
    return day.replace(day=1)


def _ledger_figures(entry: LedgerEntry, products: dict, rewards: dict, company: Optional[str]) -> dict:
    """Sale, item profit and reward profit of one ledger, limited to ``company`` when given.

    Hand-typed rewards belong to no company and only count without a filter.
    """
    sale = profit = reward_profit = 0.0
    for line in entry.items:
        product = products.get(line["product_id"])
        if company and (product is None or product.company != company):
            continue
        sale += line["total_price"]
        if product is not None:
            cost = to_base_quantity(product, line["quantity_sold"], line["unit"]) * product.purchase_price
            profit += line["total_price"] - cost
    for line in entry.reward_items or []:
        if company:
            product = products.get(line.get("main_product_id"))
            if product is None or product.company != company:
                continue
        sale += line["total_price"]
        purchase = line.get("purchase_price_per_unit")
        if purchase is None:
            reward = rewards.get(line.get("reward_id"))
            if reward is None:
                continue
            purchase = reward.purchase_price
        reward_profit += line["total_price"] - line["quantity_sold"] * purchase
    return {"sale": sale, "profit": profit, "reward_profit": reward_profit}


def dashboard(db: Session, today: date, company: Optional[str] = None) -> dict:
    this_month = _month_start(today)
    last_month = _month_start(this_month - timedelta(days=1))
    yesterday = today - timedelta(days=1)

    products = db.query(Product).order_by(Product.name).all()
    by_id = {product.id: product for product in products}
    rewards = {reward.id: reward for reward in db.query(Reward).all()}

    periods = ("today", "yesterday", "this_month", "last_month")
    sales = dict.fromkeys(periods, 0.0)
    profit = dict.fromkeys(periods, 0.0)
    reward_profit = dict.fromkeys(periods, 0.0)
    daily = defaultdict(float)
    for entry in _ledgers_between(db, last_month, today):
        figures = _ledger_figures(entry, by_id, rewards, company)
        hits = []
        if entry.date == today:
            hits.append("today")
        if entry.date == yesterday:
            hits.append("yesterday")
        if entry.date >= this_month:
            hits.append("this_month")
            daily[entry.date] += figures["sale"]
        else:
            hits.append("last_month")
        for period in hits:
            sales[period] += figures["sale"]
            profit[period] += figures["profit"]
            reward_profit[period] += figures["reward_profit"]

    out_of_stock = [
        {"product_id": product.id, "name": product.name, "company": product.company, "stock": format_stock(product)}
        for product in products
        if product.quantity <= 0
    ]
    return {
        "company": company,
        "sales": sales,
        "profit": profit,
        "reward_profit": reward_profit,
        "daily_sales": [
            {"date": (this_month + timedelta(days=offset)).isoformat(), "sale": daily[this_month + timedelta(days=offset)]}
            for offset in range((today - this_month).days + 1)
        ],
        "out_of_stock": out_of_stock,
        "stock_value": sum(max(product.quantity, 0) * product.purchase_price for product in products),
        "product_count": len(products),
        "employee_count": db.query(Employee).count(),
        "pending_summaries": db.query(DailySummary).filter(DailySummary.status == "pending").count(),
    }
