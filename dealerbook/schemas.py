import datetime as dt
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, Field


class CompanyCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"name": "Pran", "profit_margin": 8}}}
    name: str = Field(min_length=1)
    profit_margin: float = 0


class NameCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"name": "Carton"}}}
    name: str = Field(min_length=1)


class ProductWrite(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Mango Juice 250ml",
                "company": "Pran",
                "purchase_price": 480,
                "profit_margin": 8,
                "round_figure_price": 520,
                "quantity": 40,
                "quantity_unit": "Carton",
                "larger_unit": "Piece",
                "conversion_factor": 24,
            }
        }
    }
    name: str = Field(min_length=1)
    company: str = Field(min_length=1)
    purchase_price: float = Field(ge=0)
    profit_margin: float = 0
    round_figure_price: Optional[float] = Field(default=None, ge=0)
    quantity: float = 0
    quantity_unit: str = Field(min_length=1)
    larger_unit: Optional[str] = None
    conversion_factor: Optional[float] = Field(default=None, gt=0)


class EmployeeWrite(BaseModel):
    model_config = {"json_schema_extra": {"example": {"name": "Rahim", "phone": "01711000000", "role": "Delivery"}}}
    name: str = Field(min_length=1)
    phone: Optional[str] = None
    role: Optional[str] = None
    daily_salary: Optional[float] = Field(default=None, ge=0)


class RewardWrite(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {"name": "Glass", "unit": "Piece", "quantity": 100, "purchase_price": 20, "profit_margin": 10}
        }
    }
    name: str = Field(min_length=1)
    unit: str = Field(min_length=1)
    quantity: float = 0
    purchase_price: float = Field(ge=0)
    profit_margin: float = 0


class RewardRuleWrite(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "main_product_id": 1,
                "main_product_quantity": 5,
                "main_product_unit": "Carton",
                "reward_id": 1,
                "reward_quantity": 1,
            }
        }
    }
    main_product_id: int
    main_product_quantity: float = Field(gt=0)
    main_product_unit: str = Field(min_length=1)
    reward_id: int
    reward_quantity: float = Field(gt=0)


class LedgerItemInput(BaseModel):
    product_id: int
    unit: Optional[str] = None
    summary_quantity: float = Field(gt=0)
    quantity_returned: float = Field(default=0, ge=0)
    price_per_unit: Optional[float] = Field(default=None, ge=0)


class DamagedItemInput(BaseModel):
    product_id: int
    unit: Optional[str] = None
    quantity: float = Field(gt=0)
    price_per_unit: Optional[float] = Field(default=None, ge=0)


class RewardLineInput(BaseModel):
    """A reward line typed into a ledger.

    ``reward_id`` picks a catalogue reward; without it the line is a hand
    typed reward and needs a name, unit and price. ``main_product_id`` marks
    an automatic reward that was edited by hand.
    """

    reward_id: Optional[int] = None
    reward_name: Optional[str] = None
    unit: Optional[str] = None
    purchase_price: Optional[float] = Field(
        default=None, ge=0, validation_alias=AliasChoices("purchase_price", "purchase_price_per_unit")
    )
    profit_margin: Optional[float] = None
    selling_price: Optional[float] = Field(
        default=None, ge=0, validation_alias=AliasChoices("selling_price", "price_per_unit")
    )
    main_product_id: Optional[int] = None
    summary_quantity: float = Field(ge=0)
    quantity_returned: float = Field(default=0, ge=0)


class SummaryRewardInput(BaseModel):
    """A reward line on a daily summary. Lines carrying ``main_product_id`` are
    automatic rewards and are recalculated on every save.
    """

    reward_id: Optional[int] = None
    reward_name: Optional[str] = None
    unit: Optional[str] = None
    purchase_price: Optional[float] = Field(
        default=None, ge=0, validation_alias=AliasChoices("purchase_price", "purchase_price_per_unit")
    )
    profit_margin: Optional[float] = None
    selling_price: Optional[float] = Field(
        default=None, ge=0, validation_alias=AliasChoices("selling_price", "price_per_unit")
    )
    main_product_id: Optional[int] = None
    quantity: float = Field(gt=0)


class LedgerWrite(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "date": "2026-10-19",
                "market": "Kawran Bazar",
                "salesperson_id": 1,
                "items": [{"product_id": 1, "unit": "Carton", "summary_quantity": 10, "quantity_returned": 1}],
                "damaged_items": [{"product_id": 1, "unit": "Piece", "quantity": 2}],
                "reward_items": [],
                "modified_reward_ids": [],
                "amount_paid": 3000,
                "due_assigned_to": 1,
                "commission": 100,
                "commission_assigned_to": 2,
                "note": "",
                "send_sms": True,
            }
        }
    }
    date: Optional[dt.date] = None
    day: Optional[str] = None
    market: Optional[str] = None
    salesperson_id: Optional[int] = None
    items: list[LedgerItemInput] = Field(default_factory=list)
    damaged_items: list[DamagedItemInput] = Field(default_factory=list)
    reward_items: list[RewardLineInput] = Field(default_factory=list)
    modified_reward_ids: list[int] = Field(default_factory=list)
    amount_paid: float = Field(default=0, ge=0)
    due_assigned_to: Optional[int] = None
    commission: float = Field(default=0, ge=0)
    commission_assigned_to: Optional[int] = None
    note: str = ""
    summary_id: Optional[int] = None
    send_sms: bool = True


class LedgerPaymentCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"type": "due", "amount": 500, "send_sms": True}}}
    type: Literal["due", "commission"]
    amount: float = Field(gt=0)
    send_sms: bool = True


class DailySummaryWrite(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "date": "2026-10-19",
                "market": "Kawran Bazar",
                "salesperson_id": 1,
                "items": [{"product_id": 1, "unit": "Carton", "summary_quantity": 10}],
                "reward_items": [],
            }
        }
    }
    date: Optional[dt.date] = None
    day: Optional[str] = None
    market: Optional[str] = None
    salesperson_id: Optional[int] = None
    items: list[LedgerItemInput] = Field(default_factory=list)
    reward_items: list[SummaryRewardInput] = Field(default_factory=list)


class ReceivableCreate(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {"employee_id": 1, "type": "payment", "amount": 500, "date": "2026-10-19", "payment_method": "Cash"}
        }
    }
    employee_id: int
    type: Literal["due", "payment"]
    amount: float = Field(gt=0)
    date: Optional[dt.date] = None
    payment_method: str = "ক্যাশ"
    note: str = ""
    send_sms: bool = True


class OtpConfirm(BaseModel):
    code: str = Field(min_length=1)


class SupplierItemInput(BaseModel):
    product_id: int
    quantity: float = Field(ge=0)
    unit: Optional[str] = None
    price_per_unit: Optional[float] = Field(default=None, ge=0)


class SupplierPaymentWrite(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "company_name": "Pran",
                "payment_date": "2026-10-19",
                "payment_method": "Bank",
                "advance_payment": 20000,
                "items": [{"product_id": 1, "quantity": 40, "unit": "Carton"}],
                "note": "",
            }
        }
    }
    company_name: str = Field(min_length=1)
    payment_date: dt.date
    payment_method: str = "Cash"
    advance_payment: float = Field(default=0, ge=0)
    items: list[SupplierItemInput] = Field(default_factory=list)
    note: str = ""


class SupplierReception(BaseModel):
    model_config = {
        "json_schema_extra": {"example": {"items": [{"product_id": 1, "quantity": 38, "unit": "Carton"}]}}
    }
    items: Optional[list[SupplierItemInput]] = None
    received_date: Optional[dt.date] = None


class SmsSettingsUpdate(BaseModel):
    api_key: Optional[str] = None
    sender_id: Optional[str] = None
    enabled: Optional[bool] = None


class ProfileUpdate(BaseModel):
    business_name: str = ""


class TemplateUpdate(BaseModel):
    template: str = Field(min_length=1)
