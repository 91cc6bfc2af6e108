"""
M-PESA (Daraja) client: OAuth access token, STK push initiation and parsing of
the asynchronous STK callback.

Calls are synchronous and never retried; any transport failure or non-2xx
response is raised as GatewayError for the caller to record and report.
"""
import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from foundation_api.config import settings
from foundation_api.errors import GatewayError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"


@dataclass
class StkPushResponse:
    checkout_request_id: str
    merchant_request_id: Optional[str]
    response_code: Optional[str]
    response_description: Optional[str]
    customer_message: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StkCallback:
    checkout_request_id: Optional[str]
    merchant_request_id: Optional[str]
    result_code: Optional[int]
    result_desc: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0

    @property
    def receipt_number(self) -> Optional[str]:
        value = self.metadata.get("MpesaReceiptNumber")
        return str(value) if value is not None else None


def stk_timestamp(now: datetime) -> str:
    return now.strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


class MpesaClient:
    def __init__(
        self,
        base_url: str = None,
        consumer_key: str = None,
        consumer_secret: str = None,
        shortcode: str = None,
        passkey: str = None,
        callback_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.MPESA_BASE_URL).rstrip("/")
        self.consumer_key = consumer_key if consumer_key is not None else settings.MPESA_CONSUMER_KEY
        self.consumer_secret = consumer_secret if consumer_secret is not None else settings.MPESA_CONSUMER_SECRET
        self.shortcode = shortcode if shortcode is not None else settings.MPESA_SHORTCODE
        self.passkey = passkey if passkey is not None else settings.MPESA_PASSKEY
        self.callback_url = callback_url if callback_url is not None else settings.MPESA_CALLBACK_URL
        self.timeout = timeout or settings.MPESA_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    def _send(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            with self._client() as client:
                response = client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("mpesa request failed", extra={"path": path, "error": str(exc)})
            raise GatewayError(f"M-PESA request failed: {exc}") from exc

        if response.is_error:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            logger.error(
                "mpesa non-2xx response",
                extra={"path": path, "status_code": response.status_code, "body": payload},
            )
            raise GatewayError(
                f"M-PESA responded with HTTP {response.status_code}",
                upstream_status=response.status_code,
                payload=payload,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError("M-PESA returned a non-JSON response", upstream_status=response.status_code) from exc

    # PUBLIC_INTERFACE
    def get_access_token(self) -> str:
        """Fetch an OAuth access token with the configured consumer credentials."""
        if not self.consumer_key or not self.consumer_secret:
            raise GatewayError("M-PESA credentials are not configured")
        data = self._send(
            "GET",
            TOKEN_PATH,
            params={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret),
        )
        token = data.get("access_token")
        if not token:
            raise GatewayError("M-PESA did not return an access token", payload=data)
        return token

    # PUBLIC_INTERFACE
    def initiate_stk_push(
        self,
        amount: float,
        phone: str,
        account_reference: str,
        transaction_desc: str,
        now: Optional[datetime] = None,
    ) -> StkPushResponse:
        """Prompt the payer's phone to confirm a payment; returns the checkout reference."""
        token = self.get_access_token()
        timestamp = stk_timestamp(now or datetime.now())
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": stk_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(round(amount)),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": transaction_desc,
        }
        data = self._send("POST", STK_PUSH_PATH, json=payload, headers={"Authorization": f"Bearer {token}"})
        checkout_request_id = data.get("CheckoutRequestID")
        if not checkout_request_id:
            raise GatewayError("M-PESA response is missing CheckoutRequestID", payload=data)
        logger.info(
            "mpesa stk push initiated",
            extra={"checkout_request_id": checkout_request_id, "account_reference": account_reference},
        )
        return StkPushResponse(
            checkout_request_id=checkout_request_id,
            merchant_request_id=data.get("MerchantRequestID"),
            response_code=data.get("ResponseCode"),
            response_description=data.get("ResponseDescription"),
            customer_message=data.get("CustomerMessage"),
            raw=data,
        )


def get_mpesa_client() -> MpesaClient:
    """Dependency hook; tests override it with a client bound to a mock transport."""
    return MpesaClient()


def parse_stk_callback(body: Dict[str, Any]) -> Optional[StkCallback]:
    """Extract the stkCallback block of a gateway notification, or None if absent."""
    stk = ((body or {}).get("Body") or {}).get("stkCallback")
    if not stk:
        return None
    items = (stk.get("CallbackMetadata") or {}).get("Item") or []
    metadata = {item.get("Name"): item.get("Value") for item in items if item.get("Name")}
    result_code = stk.get("ResultCode")
    try:
        result_code = int(result_code) if result_code is not None else None
    except (TypeError, ValueError):
        result_code = None
    return StkCallback(
        checkout_request_id=stk.get("CheckoutRequestID"),
        merchant_request_id=stk.get("MerchantRequestID"),
        result_code=result_code,
        result_desc=stk.get("ResultDesc") or "",
        metadata=metadata,
    )
