"""
plm_client.py - Thin REST client for the PLM system of record.

Only the three calls the reconciliation engine needs live here:

find_item   - resolve an item number to the PLM's item id
fetch_bom   - read an assembly's BOM as a remote BOMSnapshot
push_bom    - replace an assembly's BOM with locally reconciled lines

Library exceptions never escape: connection problems and server errors
become TransientNetworkError, unknown items become NotFoundError.
Authentication is a pre-issued session token; nothing here retries.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from ..errors import NotFoundError, TransientNetworkError, ValidationError
from ..models import (
    BOMLine,
    BOMSnapshot,
    Origin,
    PushResult,
    aggregate_duplicate_lines,
    coerce_quantity,
)

logger = logging.getLogger(__name__)

SESSION_HEADER = "arena_session_id"


def _name_of(value: Any) -> str:
    """PLM returns some fields as {"name": ...} objects and some as plain text."""
    if isinstance(value, dict):
        return str(value.get("name") or "")
    return "" if value is None else str(value)


def _error_text(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors:
        return "; ".join(str(e.get("message", e)) for e in errors)
    return str(body)[:200]


def line_from_payload(entry: Dict[str, Any]) -> BOMLine:
    """
    Build a BOMLine from one PLM BOM entry.

    A missing or zero quantity, and a zero line number, default to 1.
    """
    item = entry.get("item") or {}
    number = str(item.get("number") or "").strip()
    if not number:
        raise ValidationError(f"Remote BOM line {entry.get('lineNumber')} has no item number")

    attributes = {}
    for attr in entry.get("additionalAttributes") or []:
        name = attr.get("name")
        if name:
            attributes[name] = attr.get("value")

    return BOMLine(
        item_number=number,
        name=_name_of(item.get("name")),
        description=_name_of(item.get("description")),
        category=_name_of(item.get("category")),
        lifecycle_phase=_name_of(item.get("lifecyclePhase")),
        quantity=coerce_quantity(entry.get("quantity")),
        attributes=attributes,
        line_number=int(entry.get("lineNumber") or 0) or 1
    )


def line_to_payload(line: BOMLine) -> Dict[str, Any]:
    return {
        "lineNumber": line.line_number,
        "quantity": line.quantity,
        "item": {"number": line.item_number},
        "additionalAttributes": [
            {"name": key, "value": value} for key, value in line.attributes.items()
        ],
    }


class PLMClient:
    """Blocking PLM REST client built on a ``requests.Session``."""

    def __init__(
        self,
        base_url: str,
        session_token: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        if session_token:
            self.session.headers[SESSION_HEADER] = session_token

    @classmethod
    def from_settings(cls, settings) -> "PLMClient":
        settings.validate()
        return cls(
            settings.plm_base_url,
            session_token=settings.plm_session_token,
            timeout=settings.plm_timeout_seconds,
        )

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error(f"{method} {url} failed: {exc}")
            raise TransientNetworkError(f"{method} {path} failed: {exc}") from exc

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        resp = self._request("GET", path, params=params)
        if resp.status_code == 404:
            raise NotFoundError(f"GET {path}: not found")
        if not resp.ok:
            raise TransientNetworkError(f"GET {path}: HTTP {resp.status_code} {_error_text(resp)}")
        try:
            return resp.json()
        except ValueError as exc:
            raise TransientNetworkError(f"GET {path}: response is not JSON") from exc

    def find_item(self, item_number: str) -> str:
        """
        Resolve an item number to the PLM item id.

        Raises:
            NotFoundError: If no item has this number
        """
        body = self._get_json("/items", params={"number": item_number})
        for result in body.get("results") or []:
            if str(result.get("number")) == item_number and result.get("guid"):
                return str(result["guid"])
        raise NotFoundError(f"Item {item_number} not found in PLM")

    def fetch_bom(self, remote_id: str) -> BOMSnapshot:
        """
        Fetch an assembly's BOM in PLM line order.

        Repeated children are aggregated into one line with summed quantity.
        """
        body = self._get_json(f"/items/{remote_id}/bom")
        lines = [line_from_payload(entry) for entry in body.get("results") or []]
        lines = aggregate_duplicate_lines(lines)
        logger.info(f"Fetched {len(lines)} BOM lines for {remote_id}")
        return BOMSnapshot(lines=lines, origin=Origin.REMOTE)

    def push_bom(
        self,
        remote_id: str,
        lines: List[BOMLine],
        attributes: Optional[Dict[str, Any]] = None
    ) -> PushResult:
        """
        Replace the assembly's BOM with ``lines``.

        Returns:
            PushResult; HTTP and connection failures are reported, not raised

        Raises:
            NotFoundError: If the assembly does not exist
        """
        payload = {
            "lines": [line_to_payload(line) for line in lines],
            "attributes": dict(attributes or {}),
        }
        try:
            resp = self._request("PUT", f"/items/{remote_id}/bom", json=payload)
        except TransientNetworkError as exc:
            return PushResult(success=False, error=str(exc))

        if resp.status_code == 404:
            raise NotFoundError(f"PUT /items/{remote_id}/bom: not found")
        if not resp.ok:
            error = f"HTTP {resp.status_code} {_error_text(resp)}"
            logger.warning(f"Push to {remote_id} rejected: {error}")
            return PushResult(success=False, error=error)

        logger.info(f"Pushed {len(lines)} BOM lines to {remote_id}")
        return PushResult(success=True)
