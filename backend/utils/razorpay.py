import base64
import hashlib
import hmac
import json
import logging
from urllib import request, error

from config.env import RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET
from utils.errors import AppError, ExternalVerificationError
from utils.money import to_decimal

logger = logging.getLogger(__name__)

RAZORPAY_API_BASE = "https://api.razorpay.com/v1"
RAZORPAY_CURRENCY = "INR"


class GatewayError(AppError):
    status_code = 502


def _require_razorpay_secret() -> str:
    if not RAZORPAY_KEY_SECRET:
        raise AppError("Razorpay keys are not configured")
    return RAZORPAY_KEY_SECRET


def _require_razorpay_config() -> tuple[str, str]:
    secret = _require_razorpay_secret()
    if not RAZORPAY_KEY_ID:
        raise AppError("Razorpay keys are not configured")
    return RAZORPAY_KEY_ID, secret


def _basic_auth_header(key_id: str, key_secret: str) -> str:
    token = f"{key_id}:{key_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(token).decode("utf-8")


def amount_to_paise(amount_inr) -> int:
    return int((to_decimal(amount_inr) * 100).to_integral_value())


def create_razorpay_order(*, amount_paise: int, receipt: str, notes: dict | None = None) -> dict:
    key_id, key_secret = _require_razorpay_config()

    payload = {
        "amount": amount_paise,
        "currency": RAZORPAY_CURRENCY,
        "receipt": receipt,
        "notes": notes or {},
    }

    req = request.Request(
        url=f"{RAZORPAY_API_BASE}/orders",
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "Content-Type": "application/json",
            "Authorization": _basic_auth_header(key_id, key_secret),
        },
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=15) as resp:
            body = resp.read().decode("utf-8")
            return json.loads(body)
    except error.HTTPError as e:
        details = e.read().decode("utf-8", errors="ignore")
        logger.error("RAZORPAY_ORDER_FAILED status=%s body=%s", e.code, details)
        raise GatewayError(f"Razorpay order create failed: {details}")
    except (error.URLError, TimeoutError, ValueError):
        logger.exception("RAZORPAY_ORDER_FAILED receipt=%s", receipt)
        raise GatewayError("Razorpay order create failed")


def verify_checkout_signature(*, razorpay_order_id: str, razorpay_payment_id: str, razorpay_signature: str) -> bool:
    key_secret = _require_razorpay_secret()
    message = f"{razorpay_order_id}|{razorpay_payment_id}".encode("utf-8")
    expected = hmac.new(key_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, razorpay_signature or "")


def assert_payment_verified(payment_details) -> None:
    """
    Raise unless the checkout signature matches. Runs before any write.
    """
    if not payment_details or not payment_details.is_complete():
        raise ExternalVerificationError("Payment verification failed")

    ok = verify_checkout_signature(
        razorpay_order_id=payment_details.razorpay_order_id,
        razorpay_payment_id=payment_details.razorpay_payment_id,
        razorpay_signature=payment_details.razorpay_signature,
    )
    if not ok:
        logger.warning(
            "PAYMENT_SIGNATURE_MISMATCH razorpay_order=%s",
            payment_details.razorpay_order_id,
        )
        raise ExternalVerificationError("Payment verification failed")
