"""Reward rules: "buy N of a product unit, get M of a reward".

Reward lines are plain dicts, the same shape that is stored on ledger entries
and daily summaries. Automatic lines carry ``main_product_id``; custom lines
(picked from the catalogue or typed in by hand) do not.
"""
import math
from typing import Iterable


def selling_price(purchase_price: float, profit_margin: float) -> float:
    return round(purchase_price * (1 + profit_margin / 100), 2)


def rule_map(rules: Iterable) -> dict:
    mapping = {}
    for rule in rules:
        mapping[rule.main_product_id] = rule
    return mapping


def reward_count(quantity: float, rule) -> float:
    if rule.main_product_quantity <= 0:
        return 0
    return math.floor(quantity / rule.main_product_quantity) * rule.reward_quantity


def automatic_rewards(items: list[dict], rules: Iterable, rewards: Iterable, for_summary: bool = False) -> list[dict]:
    """Rewards earned by ``items`` under ``rules``.

    Ledger lines are counted on ``quantity_sold``; summary lines, which have
    no returns yet, on ``summary_quantity``.
    """
    rules_by_product = rule_map(rules)
    rewards_by_id = {reward.id: reward for reward in rewards}
    quantity_field = "summary_quantity" if for_summary else "quantity_sold"
    calculated = []
    for item in items:
        rule = rules_by_product.get(item["product_id"])
        if not rule or rule.main_product_unit != item["unit"]:
            continue
        reward = rewards_by_id.get(rule.reward_id)
        if not reward:
            continue
        given = reward_count(item[quantity_field], rule)
        if given <= 0:
            continue
        line = {
            "reward_id": reward.id,
            "reward_name": reward.name,
            "main_product_id": item["product_id"],
            "main_product_name": item["product_name"],
            "unit": reward.unit,
            "price_per_unit": reward.selling_price,
            "purchase_price_per_unit": reward.purchase_price,
            "total_price": given * reward.selling_price,
        }
        if for_summary:
            line["quantity"] = given
        else:
            line.update(summary_quantity=given, quantity_returned=0, quantity_sold=given)
        calculated.append(line)
    return calculated


def reconcile(current: list[dict], calculated: list[dict], modified_ids: Iterable[int]) -> list[dict]:
    """Merge freshly calculated automatic rewards into the lines on an entry.

    Custom lines are always kept. An automatic line whose reward id is in
    ``modified_ids`` was edited (or removed) by hand and is kept as the entry
    has it; every other automatic line is replaced by the calculation.
    """
    modified = set(modified_ids)
    custom = [line for line in current if not line.get("main_product_id")]
    edited = [
        line for line in current
        if line.get("main_product_id") and line.get("reward_id") in modified
    ]
    fresh = [line for line in calculated if line["reward_id"] not in modified]
    return custom + edited + fresh
