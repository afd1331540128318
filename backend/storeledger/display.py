from __future__ import annotations

from flask import current_app

from .domain.money import Money


def money_display(cents: int) -> str:
    """Money for people, e.g. "Rs. 1,234.50". The API always carries cents as well."""
    return Money(cents).format(current_app.config.get("CURRENCY_SYMBOL", ""))


def with_money_display(data: dict, *keys: str) -> dict:
    """Add a "<name>_display" string next to each "<name>_cents" key given."""
    for key in keys:
        if data.get(key) is not None:
            data[key[: -len("_cents")] + "_display"] = money_display(data[key])
    return data
