from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from restock.core.errors import ValidationError


class OrderItem(BaseModel):
    """One line of an order. Unknown keys are kept so clients can round-trip their own fields."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[Union[int, str]] = None
    name: str
    quantity: float = Field(validation_alias=AliasChoices("quantity", "shoppingQuantity"))
    unit: str
    category: Optional[str] = Field(default=None, validation_alias=AliasChoices("category", "categoryName"))
    supplier: Optional[str] = None
    supplier_id: Optional[int] = None
    external_product_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("external_product_id", "poster_id"),
    )
    product_id: Optional[int] = None
    price: Optional[float] = None
    received_quantity: Optional[float] = None
    received_price: Optional[float] = None

    @field_validator("name", "unit")
    @classmethod
    def _required_text(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("quantity")
    @classmethod
    def _positive_quantity(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("external_product_id", mode="before")
    @classmethod
    def _external_id_as_text(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value)

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class OrderPayload(BaseModel):
    department: str = ""
    section_id: Optional[int] = None
    notes: Optional[str] = None
    items: list[OrderItem]

    @field_validator("department")
    @classmethod
    def _strip_department(cls, value: str) -> str:
        return (value or "").strip()

    @field_validator("items")
    @classmethod
    def _at_least_one_item(cls, value: list[OrderItem]) -> list[OrderItem]:
        if not value:
            raise ValueError("order must contain at least one item")
        return value


class OrderPayloadPatch(BaseModel):
    """Partial payload; omitted fields keep their stored value."""

    department: Optional[str] = None
    section_id: Optional[int] = None
    notes: Optional[str] = None
    items: Optional[list[OrderItem]] = None

    @field_validator("items")
    @classmethod
    def _non_empty_when_given(cls, value: Optional[list[OrderItem]]) -> Optional[list[OrderItem]]:
        if value is not None and not value:
            raise ValueError("order must contain at least one item")
        return value


class ItemOverride(BaseModel):
    """Quantity/price override for one item, matched by item id, then by index."""

    id: Optional[Union[int, str]] = None
    index: Optional[int] = Field(default=None, ge=0)
    quantity: Optional[float] = Field(default=None, ge=0)
    price: Optional[float] = Field(default=None, ge=0)


class OrderUpdateRequest(BaseModel):
    status: Optional[str] = None
    order_data: Optional[OrderPayloadPatch] = None


class BulkUpdateRequest(BaseModel):
    order_ids: list[int] = Field(min_length=1)
    status: str
    item_overrides: Optional[dict[int, list[ItemOverride]]] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    department: str
    section_id: Optional[int] = None
    order_data: dict[str, Any]
    created_by_role: Optional[str] = None
    created_by_user_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    delivered_at: Optional[datetime] = None


def parse_model(model: type[BaseModel], data: Any) -> Any:
    """Validate ``data`` into ``model``, reporting problems as a 400 ``ValidationError``."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        problems = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()))
            problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
        raise ValidationError("Invalid request: " + "; ".join(problems)) from exc
