"""HTTP client for the external POS (Poster) storage API.

Every call goes to ``{base}/{method}?token=...`` and comes back wrapped in an
envelope, either ``{"response": ...}`` or ``{"error": {"code", "message"}}``.
Anything other than a well-formed ``response`` is raised as
``ExternalSystemError``; an empty list is only ever returned when the upstream
really said so.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import httpx

from restock.core.config import POS_API_BASE_URL_TEMPLATE, POS_TIMEOUT_SECONDS
from restock.core.errors import ExternalSystemError

logger = logging.getLogger(__name__)

DEFAULT_UNIT = "pcs"


@dataclass(frozen=True)
class PosStorage:
    storage_id: str
    name: str


@dataclass(frozen=True)
class PosIngredient:
    ingredient_id: str
    name: str
    unit: str = DEFAULT_UNIT
    category_id: str | None = None


@dataclass(frozen=True)
class PosLeftover:
    ingredient_id: str
    name: str | None = None
    quantity: float | None = None
    unit: str | None = None


@dataclass(frozen=True)
class PosSupplier:
    supplier_id: str
    name: str
    phone: str | None = None
    address: str | None = None
    comment: str | None = None


@dataclass(frozen=True)
class SupplyLine:
    ingredient_id: str
    quantity: float
    price: float = 0.0


@dataclass(frozen=True)
class SupplyConfirmation:
    supply_id: str | None
    raw: Any


def _should_retry(status_code: int) -> bool:
    return status_code in (500, 502, 503, 504)


def _backoff_seconds(attempt: int) -> float:
    # 0.5s, 1s, 2s... (max 4s)
    return min(0.5 * (2 ** max(0, attempt - 1)), 4.0)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _number(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class PosClient:
    def __init__(
        self,
        account_name: str,
        access_token: str,
        *,
        timeout: float = POS_TIMEOUT_SECONDS,
        base_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
        retries: int = 2,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not account_name or not access_token:
            raise ExternalSystemError("POS account is not linked for this tenant", operation="connect")
        self.account_name = account_name
        self._token = access_token
        self._retries = max(1, retries)
        self._sleep = sleep
        self.base_url = (base_url or POS_API_BASE_URL_TEMPLATE.format(account=account_name)).rstrip("/")
        self._client = httpx.Client(timeout=httpx.Timeout(timeout), transport=transport)

    def __enter__(self) -> "PosClient":
        return self

    def __exit__(self, *_exc) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # -- transport ---------------------------------------------------------

    def _send(self, method: str, http_method: str, *, params=None, data=None) -> httpx.Response:
        url = f"{self.base_url}/{method}"
        query = {"token": self._token, **(params or {})}
        attempts = self._retries if http_method == "GET" else 1
        last_error = ExternalSystemError(f"POS {method} failed", operation=method)

        for attempt in range(1, attempts + 1):
            try:
                response = self._client.request(http_method, url, params=query, data=data)
            except httpx.TimeoutException as exc:
                last_error = ExternalSystemError(f"POS {method} timed out", operation=method)
                logger.warning("POS call timed out: method=%s attempt=%s error=%s", method, attempt, exc)
            except httpx.HTTPError as exc:
                last_error = ExternalSystemError(f"POS {method} failed: {exc.__class__.__name__}", operation=method)
                logger.warning("POS call failed: method=%s attempt=%s error=%s", method, attempt, exc)
            else:
                if 200 <= response.status_code < 300:
                    return response
                last_error = ExternalSystemError(
                    f"POS {method} returned HTTP {response.status_code}",
                    operation=method,
                    upstream_status=response.status_code,
                )
                logger.warning(
                    "POS call rejected: method=%s status_code=%s attempt=%s",
                    method,
                    response.status_code,
                    attempt,
                )
                if not _should_retry(response.status_code):
                    break

            if attempt < attempts:
                self._sleep(_backoff_seconds(attempt))

        raise last_error

    def _call(self, method: str, http_method: str = "GET", *, params=None, data=None) -> Any:
        response = self._send(method, http_method, params=params, data=data)
        try:
            body = response.json()
        except ValueError as exc:
            raise ExternalSystemError(f"POS {method} returned invalid JSON", operation=method) from exc

        if not isinstance(body, dict):
            raise ExternalSystemError(f"POS {method} returned an unexpected body", operation=method)

        error = body.get("error")
        if error:
            if isinstance(error, dict):
                code = error.get("code")
                message = error.get("message") or "unknown error"
            else:
                code, message = None, str(error)
            raise ExternalSystemError(f"POS {method} error (code {code}): {message}", operation=method)

        if "response" not in body:
            raise ExternalSystemError(f"POS {method} response is missing", operation=method)
        return body["response"]

    def _call_list(self, method: str, *, params=None) -> list[dict]:
        payload = self._call(method, params=params)
        if not isinstance(payload, list):
            raise ExternalSystemError(f"POS {method} returned {type(payload).__name__}, expected a list", operation=method)
        return [row for row in payload if isinstance(row, dict)]

    # -- reads -------------------------------------------------------------

    def get_storages(self) -> list[PosStorage]:
        storages = []
        for row in self._call_list("storage.getStorages"):
            storage_id = _text(row.get("storage_id"))
            name = _text(row.get("storage_name"))
            if storage_id is None or name is None:
                logger.info("Skipping malformed POS storage row: %s", row)
                continue
            storages.append(PosStorage(storage_id=storage_id, name=name))
        return storages

    def get_ingredients(self) -> list[PosIngredient]:
        ingredients = []
        for row in self._call_list("menu.getIngredients"):
            ingredient_id = _text(row.get("ingredient_id"))
            name = _text(row.get("ingredient_name"))
            if ingredient_id is None or name is None:
                logger.info("Skipping malformed POS ingredient row: %s", row)
                continue
            ingredients.append(
                PosIngredient(
                    ingredient_id=ingredient_id,
                    name=name,
                    unit=_text(row.get("ingredient_unit")) or DEFAULT_UNIT,
                    category_id=_text(row.get("category_id") or row.get("ingredient_category_id")),
                )
            )
        return ingredients

    def get_storage_leftovers(self, storage_id: str) -> list[PosLeftover]:
        leftovers = []
        for row in self._call_list("storage.getStorageLeftovers", params={"storage_id": storage_id}):
            ingredient_id = _text(row.get("ingredient_id"))
            if ingredient_id is None:
                logger.info("Skipping malformed POS leftover row: %s", row)
                continue
            leftovers.append(
                PosLeftover(
                    ingredient_id=ingredient_id,
                    name=_text(row.get("ingredient_name")),
                    quantity=_number(row.get("storage_ingredient_left", row.get("ingredient_left"))),
                    unit=_text(row.get("ingredient_unit")),
                )
            )
        return leftovers

    def get_suppliers(self) -> list[PosSupplier]:
        suppliers = []
        for row in self._call_list("storage.getSuppliers"):
            supplier_id = _text(row.get("supplier_id"))
            name = _text(row.get("supplier_name"))
            if name is None:
                logger.info("Skipping malformed POS supplier row: %s", row)
                continue
            suppliers.append(
                PosSupplier(
                    supplier_id=supplier_id or "",
                    name=name,
                    phone=_text(row.get("supplier_phone")),
                    # The upstream field is spelled both ways.
                    address=_text(row.get("supplier_address") or row.get("supplier_adress")),
                    comment=_text(row.get("supplier_comment")),
                )
            )
        return suppliers

    # -- writes ------------------------------------------------------------

    def create_supply(
        self,
        supplier_id: str,
        storage_id: str,
        items: Iterable[SupplyLine],
        comment: str | None = None,
    ) -> SupplyConfirmation:
        lines = list(items)
        if not lines:
            raise ExternalSystemError("Supply has no items", operation="storage.createSupplyOrder")
        form = {
            "supplier_id": str(supplier_id),
            "storage_id": str(storage_id),
            "supply": json.dumps(
                [
                    {
                        "product_id": line.ingredient_id,
                        "count": line.quantity,
                        "sum": round((line.price or 0) * line.quantity, 2),
                    }
                    for line in lines
                ]
            ),
        }
        if comment:
            form["comment"] = comment

        result = self._call("storage.createSupplyOrder", "POST", data=form)
        supply_id = result if isinstance(result, (str, int)) else None
        if isinstance(result, dict):
            supply_id = result.get("supply_id") or result.get("id")
        logger.info(
            "POS supply created: supplier_id=%s storage_id=%s lines=%s supply_id=%s",
            supplier_id,
            storage_id,
            len(lines),
            supply_id,
        )
        return SupplyConfirmation(supply_id=_text(supply_id), raw=result)
