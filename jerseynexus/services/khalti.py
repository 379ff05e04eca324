"""Khalti KPG-2 (``/epayment/initiate/`` and ``/epayment/lookup/``)."""
from typing import Optional

import requests
from loguru import logger

from jerseynexus.core.config import settings
from jerseynexus.core.errors import PaymentGatewayError

DEFAULT_PHONE = "9800000000"


def to_paisa(amount: float) -> int:
    return int(round(amount * 100))


class KhaltiClient:
    def __init__(self, secret_key: str, base_url: str, timeout: int = 30):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout

    def _post(self, path: str, payload: dict) -> dict:
        headers = {"Authorization": f"Key {self.secret_key}", "Content-Type": "application/json"}
        try:
            response = requests.post(self.base_url + path, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error(f"Khalti {path} request failed: {exc}")
            raise PaymentGatewayError("Could not reach Khalti", {"error": str(exc)}) from exc

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text}
        if response.status_code >= 400:
            logger.warning(f"Khalti {path} rejected ({response.status_code}): {data}")
            message = data.get("detail") or data.get("error_key") or "Khalti rejected the request"
            raise PaymentGatewayError(str(message), data)
        return data

    def initiate(self, purchase_order_id: str, purchase_order_name: str, amount: float, return_url: str,
                 website_url: str, customer_name: str, customer_email: str,
                 customer_phone: Optional[str] = None) -> dict:
        """Returns Khalti's ``{pidx, payment_url, expires_at, expires_in}``."""
        payload = {
            "return_url": return_url,
            "website_url": website_url,
            "amount": to_paisa(amount),
            "purchase_order_id": purchase_order_id,
            "purchase_order_name": purchase_order_name,
            "customer_info": {
                "name": customer_name,
                "email": customer_email,
                "phone": customer_phone or DEFAULT_PHONE,
            },
        }
        data = self._post("initiate/", payload)
        logger.info(f"Khalti payment initiated for {purchase_order_id}: pidx={data.get('pidx')}")
        return data

    def lookup(self, pidx: str) -> dict:
        """Returns ``{pidx, total_amount, status, transaction_id, fee, refunded}``."""
        data = self._post("lookup/", {"pidx": pidx})
        logger.info(f"Khalti lookup {pidx}: {data.get('status')}")
        return data


khalti_client = KhaltiClient(settings.KHALTI_SECRET_KEY, settings.KHALTI_API_URL, settings.KHALTI_TIMEOUT)
