"""Kakao alimtalk notifications through the Solapi HTTP API.

`SolapiClient` signs and posts a single message. `KakaoNotifier` wraps it
with the per-recipient cooldown backed by the `kakaosendlog` table and
the three message templates the marketplace sends. Neither raises into
the caller: every outcome is a result dict and a log line.
"""

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import httpx
from sqlmodel import Session

from ..config import settings
from .. import repositories

logger = logging.getLogger("app.notify")

TEMPLATE_IDS = {
    "NEW_MESSAGE": "KA01TP230126085130773ZHclHN4i674",
    "PURCHASE": "KA01TP231103085130773ZHclHN4i674",
    "TICKET": "KA01TP230505085130773ZHclHN4i674",
}
DEFAULT_NAME = "고객"


def normalize_phone(phone: Optional[str]) -> str:
    """Strip hyphens and spaces from a phone number."""
    return (phone or "").replace("-", "").replace(" ", "").strip()


def auth_header(api_key: str, api_secret: str, date: Optional[str] = None, salt: Optional[str] = None) -> str:
    """Build the `HMAC-SHA256 apiKey=..., date=..., salt=..., signature=...` header."""
    date = date or datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
    salt = salt or secrets.token_hex(16)
    signature = hmac.new(api_secret.encode(), (date + salt).encode(), hashlib.sha256).hexdigest()
    return f"HMAC-SHA256 apiKey={api_key}, date={date}, salt={salt}, signature={signature}"


class SolapiClient:
    def __init__(
        self,
        api_key: str = None,
        api_secret: str = None,
        sender_key: str = None,
        sender_phone: str = None,
        base_url: str = None,
        transport: httpx.BaseTransport = None,
        timeout: float = 10.0,
    ):
        self.api_key = settings.SOLAPI_API_KEY if api_key is None else api_key
        self.api_secret = settings.SOLAPI_API_SECRET if api_secret is None else api_secret
        self.sender_key = settings.SOLAPI_SENDER_KEY if sender_key is None else sender_key
        self.sender_phone = settings.SENDER_PHONE if sender_phone is None else sender_phone
        self.base_url = (base_url or settings.SOLAPI_BASE_URL).rstrip("/")
        self.transport = transport
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_secret and self.sender_key)

    def send(self, to: str, template_id: str, variables: Dict[str, str]) -> dict:
        """Send one alimtalk message; returns `{success, messageId}` or `{success: False, error}`."""
        phone = normalize_phone(to)
        if not self.configured:
            logger.info("kakao send skipped (not configured) template=%s", template_id)
            return {"success": False, "error": "not configured"}
        body = {
            "message": {
                "to": phone,
                "from": normalize_phone(self.sender_phone),
                "kakaoOptions": {"pfId": self.sender_key, "templateId": template_id, "variables": variables},
            }
        }
        headers = {"Authorization": auth_header(self.api_key, self.api_secret)}
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                resp = client.post("/messages/v4/send", json=body, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException:
            logger.warning("kakao send timed out template=%s to=%s", template_id, phone)
            return {"success": False, "error": f"request timed out after {self.timeout}s"}
        except httpx.HTTPStatusError as e:
            logger.warning("kakao send failed template=%s to=%s status=%s", template_id, phone, e.response.status_code)
            return {"success": False, "error": f"HTTP {e.response.status_code}: {e.response.text[:200]}"}
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("kakao send error template=%s to=%s: %s", template_id, phone, e)
            return {"success": False, "error": str(e) or type(e).__name__}
        logger.info("kakao sent template=%s to=%s", template_id, phone)
        return {"success": True, "messageId": data.get("messageId"), "data": data}


class KakaoCooldown:
    """Allow at most one message per phone and type inside the cooldown window."""

    def __init__(self, session: Session, minutes: int = None):
        self.repo = repositories.KakaoSendLogRepository(session)
        self.minutes = settings.KAKAO_COOLDOWN_MINUTES if minutes is None else minutes

    def can_send(self, phone: str, message_type: str) -> bool:
        since = datetime.now(timezone.utc) - timedelta(minutes=self.minutes)
        try:
            recent = self.repo.latest_since(normalize_phone(phone), message_type, since)
        except Exception:
            logger.exception("kakao cooldown check failed; not sending")
            self.repo.session.rollback()
            return False
        return recent is None

    def record_send(self, phone: str, message_type: str) -> None:
        try:
            self.repo.record(normalize_phone(phone), message_type)
        except Exception:
            logger.exception("failed to record kakao send")
            self.repo.session.rollback()


class KakaoNotifier:
    """Template-level sends with cooldown; used by the services."""

    def __init__(self, session: Session, client: SolapiClient = None):
        self.client = client or SolapiClient()
        self.cooldown = KakaoCooldown(session)

    def notify(self, phone: Optional[str], message_type: str, variables: Dict[str, str]) -> dict:
        phone = normalize_phone(phone)
        if not phone:
            return {"success": False, "error": "no phone number"}
        if not self.cooldown.can_send(phone, message_type):
            logger.info("kakao %s to %s skipped by cooldown", message_type, phone)
            return {"success": False, "skipped": True, "error": "cooldown"}
        result = self.client.send(phone, TEMPLATE_IDS[message_type], variables)
        if result.get("success"):
            self.cooldown.record_send(phone, message_type)
        return result

    def new_message(self, phone: Optional[str], name: Optional[str]) -> dict:
        return self.notify(phone, "NEW_MESSAGE", {"#{이름}": name or DEFAULT_NAME})

    def purchase(self, phone: Optional[str], name: Optional[str], order_number: str, product: str, price: int) -> dict:
        return self.notify(
            phone,
            "PURCHASE",
            {
                "#{이름}": name or DEFAULT_NAME,
                "#{주문번호}": order_number,
                "#{상품명}": product,
                "#{가격}": f"{price:,}",
            },
        )

    def ticket(self, phone: Optional[str], name: Optional[str], order_number: str, product: str) -> dict:
        return self.notify(
            phone,
            "TICKET",
            {"#{이름}": name or DEFAULT_NAME, "#{주문번호}": order_number, "#{상품명}": product},
        )
