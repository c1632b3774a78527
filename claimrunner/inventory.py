"""Helpers that convert raw inventory payloads into boxes and summaries."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

from .errors import MalformedPayloadError, NotEligibleError
from .models import AssetTotals, InventoryItem, InventorySummary

_CANDIDATE_PATHS: List[Iterable[str]] = [
    ("boxes",),
    ("items",),
    ("data", "boxes"),
    ("data", "items"),
    ("result", "boxes"),
]

_NOT_ELIGIBLE_MARKERS = {"not_eligible", "not eligible", "ineligible"}


def _walk(payload: Any, path: Iterable[str]) -> Any:
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _first(raw: Dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def is_not_eligible(payload: Any) -> bool:
    """Detect an explicit "not eligible" answer."""
    if not isinstance(payload, dict):
        return False
    for scope in (payload, payload.get("data")):
        if not isinstance(scope, dict):
            continue
        if scope.get("eligible") is False or scope.get("isEligible") is False:
            return True
        for key in ("error", "code", "reason", "status"):
            value = scope.get(key)
            if isinstance(value, str) and value.strip().lower() in _NOT_ELIGIBLE_MARKERS:
                return True
    return False


def extract_boxes(payload: Any) -> Optional[List[Any]]:
    """Return the raw box list, or ``None`` if no known path holds a list."""
    for path in _CANDIDATE_PATHS:
        current = _walk(payload, path)
        if isinstance(current, list):
            return current
    return None


def _parse_amounts(raw: Dict[str, Any]) -> tuple[float, ...]:
    value = _first(raw, ("amounts", "amount", "value"))
    if value is None:
        raise ValueError("amount is missing")
    if isinstance(value, (list, tuple)):
        if not value:
            raise ValueError("amounts list is empty")
        return tuple(float(v) for v in value)
    return (float(value),)


def to_item(raw: Any) -> InventoryItem:
    if not isinstance(raw, dict):
        raise ValueError(f"box is not an object: {raw!r}")

    box_id = _first(raw, ("id", "boxId", "box_id"))
    if box_id is None:
        raise ValueError("box id is missing")

    week = _first(raw, ("week", "weekIndex", "week_index"))
    if week is None:
        raise ValueError(f"box {box_id}: week is missing")

    asset_type = _first(raw, ("assetType", "asset_type", "asset", "type", "token"))
    if asset_type is None:
        raise ValueError(f"box {box_id}: asset type is missing")

    opened = _first(raw, ("opened", "isOpened", "is_opened"))
    if isinstance(opened, str):
        opened = opened.strip().lower() in ("true", "1", "yes")

    return InventoryItem(
        box_id=str(box_id),
        week=int(week),
        opened=bool(opened),
        amounts=_parse_amounts(raw),
        asset_type=str(asset_type),
    )


def parse_inventory(payload: Any) -> List[InventoryItem]:
    """Convert an inventory payload into boxes.

    Raises
    ------
    NotEligibleError
        The payload explicitly reports the identity as not eligible
    MalformedPayloadError
        The payload does not contain a well-formed box list
    """
    if is_not_eligible(payload):
        raise NotEligibleError()

    boxes = extract_boxes(payload)
    if boxes is None:
        raise MalformedPayloadError(f"no box list in inventory payload: {str(payload)[:200]}")

    items: List[InventoryItem] = []
    for raw in boxes:
        try:
            items.append(to_item(raw))
        except (TypeError, ValueError) as exc:
            raise MalformedPayloadError(f"malformed box: {exc}") from exc
    return items


def unopened_in_claim_order(items: Iterable[InventoryItem]) -> List[InventoryItem]:
    """Unopened boxes sorted ascending by week; ties keep payload order."""
    return sorted((item for item in items if not item.opened), key=lambda item: item.week)


def summarize(items: Iterable[InventoryItem]) -> InventorySummary:
    """Per-asset totals over all boxes, opened and unopened."""
    summary = InventorySummary()
    assets: Dict[str, AssetTotals] = {}
    for item in items:
        totals = assets.setdefault(item.asset_type, AssetTotals())
        amount = item.amount
        totals.total += amount
        summary.total_items += 1
        if item.opened:
            totals.opened += amount
            summary.opened_count += 1
        else:
            totals.unopened += amount
            summary.unopened_count += 1
    summary.assets = assets
    return summary
