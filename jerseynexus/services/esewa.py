"""
eSewa ePay v2.

The checkout is an HTML form POSTed by the browser to ``ESEWA_FORM_URL``.
Both the form and eSewa's success callback carry a base64 HMAC-SHA256
signature over ``name=value`` pairs joined with commas, in the order given by
``signed_field_names``.
"""
import base64
import hashlib
import hmac
import json
from typing import Mapping, Sequence

import requests
from loguru import logger

from jerseynexus.core.config import settings
from jerseynexus.core.errors import PaymentGatewayError

REQUEST_SIGNED_FIELDS = ("total_amount", "transaction_uuid", "product_code")
RESPONSE_SIGNED_FIELDS = (
    "transaction_code",
    "status",
    "total_amount",
    "transaction_uuid",
    "product_code",
    "signed_field_names",
)


def format_amount(value: float) -> str:
    """eSewa compares amounts as strings: 100.0 -> "100", 99.5 -> "99.5"."""
    return f"{value:.2f}".rstrip("0").rstrip(".")


def generate_signature(secret_key: str, fields: Mapping[str, object], field_names: Sequence[str]) -> str:
    message = ",".join(f"{name}={fields[name]}" for name in field_names)
    digest = hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


class EsewaGateway:
    def __init__(self, merchant_code: str, secret_key: str, form_url: str, status_url: str, timeout: int = 30):
        self.merchant_code = merchant_code
        self.secret_key = secret_key
        self.form_url = form_url
        self.status_url = status_url
        self.timeout = timeout

    def build_form(self, transaction_uuid: str, amount: float, success_url: str, failure_url: str) -> dict:
        total = format_amount(amount)
        fields = {
            "amount": total,
            "tax_amount": "0",
            "total_amount": total,
            "transaction_uuid": transaction_uuid,
            "product_code": self.merchant_code,
            "product_service_charge": "0",
            "product_delivery_charge": "0",
            "success_url": success_url,
            "failure_url": failure_url,
            "signed_field_names": ",".join(REQUEST_SIGNED_FIELDS),
        }
        fields["signature"] = generate_signature(self.secret_key, fields, REQUEST_SIGNED_FIELDS)
        return fields

    @staticmethod
    def decode_callback(data: str) -> dict:
        """Decode the base64 JSON ``data`` query parameter. Raises ValueError."""
        try:
            decoded = base64.b64decode(data + "=" * (-len(data) % 4))
            payload = json.loads(decoded)
        except (ValueError, TypeError) as exc:
            raise ValueError("Malformed eSewa callback data") from exc
        if not isinstance(payload, dict):
            raise ValueError("Malformed eSewa callback data")
        return payload

    def verify_callback(self, payload: Mapping[str, object]) -> bool:
        signature = payload.get("signature")
        if not signature:
            return False
        signed = payload.get("signed_field_names")
        field_names = signed.split(",") if isinstance(signed, str) and signed else RESPONSE_SIGNED_FIELDS
        if any(name not in payload for name in field_names):
            return False
        expected = generate_signature(self.secret_key, payload, field_names)
        return hmac.compare_digest(expected, str(signature))

    def check_status(self, transaction_uuid: str, total_amount: str) -> dict:
        """
        Ask eSewa for the state of a transaction. The response ``status`` is one
        of COMPLETE, PENDING, FULL_REFUND, PARTIAL_REFUND, AMBIGUOUS, NOT_FOUND
        or CANCELED.
        """
        params = {
            "product_code": self.merchant_code,
            "total_amount": total_amount,
            "transaction_uuid": transaction_uuid,
        }
        try:
            response = requests.get(self.status_url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error(f"eSewa status check failed for {transaction_uuid}: {exc}")
            raise PaymentGatewayError("Could not reach eSewa", {"error": str(exc)}) from exc

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text}
        if response.status_code >= 400:
            raise PaymentGatewayError("eSewa status check failed", data)
        logger.info(f"eSewa status for {transaction_uuid}: {data.get('status')}")
        return data


esewa_gateway = EsewaGateway(
    merchant_code=settings.ESEWA_MERCHANT_CODE,
    secret_key=settings.ESEWA_SECRET_KEY,
    form_url=settings.ESEWA_FORM_URL,
    status_url=settings.ESEWA_STATUS_URL,
    timeout=settings.ESEWA_TIMEOUT,
)
