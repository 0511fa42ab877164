import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from ..errors import PaymentAPIError


MAX_RECENT = 100
MAX_BATCH = 20

PAID = "paid"
UNPAID = "unpaid"
EXPIRED = "expired"


@dataclass(frozen=True)
class PaymentStatus:
    plate: str
    status: str
    expiration_time: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.status == PAID


@dataclass(frozen=True)
class PaymentConfirmation:
    plate: str
    duration_hours: float
    cost: float
    paid_at: datetime
    expiration_time: datetime


def _parse_time(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _clean_plate(plate: str) -> str:
    if not isinstance(plate, str) or not plate.strip():
        raise ValueError("License plate is required")
    return plate.strip().upper()


def _status_for(plate: str, paid: bool, expiration: Optional[datetime], now: datetime) -> PaymentStatus:
    if not paid or expiration is None:
        return PaymentStatus(plate, UNPAID, None)
    if expiration <= now:
        return PaymentStatus(plate, EXPIRED, expiration)
    return PaymentStatus(plate, PAID, expiration)


class PaymentGateway:
    """Looks up and records parking payments keyed by the formatted plate.

    In ``http`` mode every call goes to the parking payments API. In
    ``dry_run`` mode records live in memory, which is enough for demos and
    for running the scanner without a backend.
    """

    def __init__(self, mode: str = "dry_run", http: Optional[Dict[str, Any]] = None, clock=None):
        self.mode = mode
        self.http = http or {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    # -- http transport --

    def _url(self, path: str) -> str:
        base = (self.http.get("base_url") or "").rstrip("/")
        if not base:
            raise PaymentAPIError("payments.http.base_url is not configured")
        return f"{base}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kw) -> Dict[str, Any]:
        url = self._url(path)
        headers = {"Content-Type": "application/json", **(self.http.get("headers") or {})}
        timeout = self.http.get("timeout_sec") or 10
        try:
            resp = requests.request(method, url, headers=headers, timeout=timeout, **kw)
        except requests.Timeout as e:
            logging.warning("Payment API timeout: %s %s", method, url)
            raise PaymentAPIError(f"Request timeout for {url}") from e
        except requests.RequestException as e:
            logging.warning("Payment API request failed: %s", e)
            raise PaymentAPIError(f"Unable to reach payment API: {e}") from e
        try:
            resp_body = resp.json()
        except ValueError:
            resp_body = None
        body = resp_body if isinstance(resp_body, dict) else {"message": resp.text[:200]}
        if not resp.ok:
            desc = body.get("message") or body.get("error") or resp.reason
            logging.warning("Payment API error: status=%s desc=%s", resp.status_code, desc)
            raise PaymentAPIError(f"HTTP {resp.status_code}: {desc}", status_code=resp.status_code)
        if not isinstance(resp_body, dict):
            raise PaymentAPIError(f"Unexpected response body from {url}", status_code=resp.status_code)
        return body

    # -- operations --

    def status(self, plate: str) -> PaymentStatus:
        plate = _clean_plate(plate)
        if self.mode == "http":
            body = self._request("GET", f"payments/{quote(plate, safe='')}")
            return PaymentStatus(
                plate=body.get("licensePlate", plate),
                status=body.get("status", UNPAID),
                expiration_time=_parse_time(body.get("expirationTime")),
            )
        with self._lock:
            record = self._records.get(plate)
        if record is None:
            return PaymentStatus(plate, UNPAID, None)
        return _status_for(plate, record["paid"], record["expiration_time"], self._clock())

    def pay(self, plate: str, duration_hours: float, cost: float) -> PaymentConfirmation:
        plate = _clean_plate(plate)
        if not isinstance(duration_hours, (int, float)) or duration_hours <= 0:
            raise ValueError("Duration must be a positive number")
        if not isinstance(cost, (int, float)) or cost <= 0:
            raise ValueError("Cost must be a positive number")
        if self.mode == "http":
            body = self._request("POST", "payments", json={"licensePlate": plate, "duration": duration_hours, "cost": cost})
            payment = body.get("payment") or {}
            paid_at = _parse_time(payment.get("paidAt")) or self._clock()
            confirmation = PaymentConfirmation(
                plate=payment.get("licensePlate", plate),
                duration_hours=payment.get("duration", duration_hours),
                cost=payment.get("cost", cost),
                paid_at=paid_at,
                expiration_time=_parse_time(payment.get("expirationTime")) or paid_at + timedelta(hours=duration_hours),
            )
        else:
            now = self._clock()
            confirmation = PaymentConfirmation(plate, duration_hours, cost, now, now + timedelta(hours=duration_hours))
            with self._lock:
                self._records[plate] = {
                    "paid": True,
                    "expiration_time": confirmation.expiration_time,
                    "duration": duration_hours,
                    "cost": cost,
                    "paid_at": now,
                }
        logging.info("Payment recorded for plate=%s duration=%sh cost=%s", plate, duration_hours, cost)
        return confirmation

    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        limit = max(1, min(int(limit), MAX_RECENT))
        if self.mode == "http":
            return self._request("GET", "payments", params={"limit": limit}).get("payments", [])
        with self._lock:
            items = [{"licensePlate": p, **r} for p, r in self._records.items()]
        items.sort(key=lambda r: r["paid_at"], reverse=True)
        return items[:limit]

    def batch_status(self, plates: List[str]) -> List[PaymentStatus]:
        if not plates:
            raise ValueError("plates must be a non-empty list")
        if len(plates) > MAX_BATCH:
            raise ValueError(f"Maximum {MAX_BATCH} license plates per batch request")
        if self.mode != "http":
            return [self.status(p) for p in plates]
        body = self._request("POST", "payments/batch-status", json={"licensePlates": [_clean_plate(p) for p in plates]})
        out = []
        for item in body.get("results", []):
            if item.get("error"):
                logging.warning("Batch status failed for %s: %s", item.get("licensePlate"), item["error"])
                continue
            out.append(PaymentStatus(item["licensePlate"], item.get("status", UNPAID), _parse_time(item.get("expirationTime"))))
        return out

    def health(self) -> bool:
        if self.mode != "http":
            return True
        try:
            self._request("GET", "health")
            return True
        except PaymentAPIError as e:
            logging.warning("Payment API health check failed: %s", e)
            return False
