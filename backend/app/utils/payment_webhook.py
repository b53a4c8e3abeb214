"""Parsing of payment-provider webhook payloads.

The provider (and older client code) send the same facts under several
key spellings; `parse_webhook` normalizes them into one `WebhookEvent`.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from ..models import PAYMENT_STATUSES


@dataclass
class WebhookEvent:
    payment_id: Optional[str]
    transaction_id: Optional[str]
    transaction_type: Optional[str]
    status: str


def _first(payload: Mapping[str, Any], *keys: str) -> Optional[str]:
    data = payload.get("data") if isinstance(payload.get("data"), Mapping) else {}
    for key in keys:
        if "." in key:
            value = data.get(key.split(".", 1)[1])
        else:
            value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def map_status(transaction_type: Optional[str], explicit_status: Optional[str] = None) -> str:
    """Map a provider event type to a payment status.

    An explicit status already in `PAYMENT_STATUSES` wins. Types ending
    in Paid/Failed/Cancelled map to DONE/FAILED/CANCELLED, any other type
    is PENDING, and a payload with neither is treated as paid.
    """
    if explicit_status and explicit_status.upper() in PAYMENT_STATUSES:
        return explicit_status.upper()
    if not transaction_type:
        return "DONE"
    t = transaction_type.strip()
    if t.endswith("Paid"):
        return "DONE"
    if t.endswith("Failed"):
        return "FAILED"
    if t.endswith("Cancelled"):  # also PartialCancelled
        return "CANCELLED"
    return "PENDING"


def parse_webhook(payload: Mapping[str, Any]) -> WebhookEvent:
    payment_id = _first(payload, "paymentId", "payment_id", "id", "data.paymentId")
    tx_id = _first(payload, "txId", "tx_id", "transactionId", "data.transactionId")
    tx_type = _first(payload, "type", "transactionType", "transaction_type")
    status = map_status(tx_type, _first(payload, "status"))
    return WebhookEvent(payment_id=payment_id, transaction_id=tx_id, transaction_type=tx_type, status=status)
