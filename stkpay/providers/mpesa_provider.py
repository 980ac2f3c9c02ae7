"""
M-Pesa Payment Provider
Based on the Safaricom Daraja API.

Supported flows
---------------
STK Push (Lipa na M-Pesa Online)
    POST /mpesa/stkpush/v1/processrequest
    POST /mpesa/stkpushquery/v1/query         (status poll)

Authentication
    GET  /oauth/v1/generate?grant_type=client_credentials  (Basic auth)
    See stkpay.providers.mpesa_auth.

Callback
    Safaricom POSTs Body.stkCallback to the configured CallBackURL once the
    payer has answered (or ignored) the prompt. parse_stk_callback() turns it
    into a PaymentResult.

Required config keys
--------------------
    consumer_key        - From Safaricom Developer Portal app
    consumer_secret     - From Safaricom Developer Portal app
    shortcode           - Business shortcode (PayBill or Buy-Goods)
    passkey             - Lipa na M-Pesa Online passkey
    callback_url        - Publicly reachable absolute STK callback URL

Optional config keys
--------------------
    environment         - "sandbox" (default) | "production"
    base_url            - Overrides the environment URL
    transaction_type    - "CustomerPayBillOnline" (default) | "CustomerBuyGoodsOnline"
    timeout             - Seconds per outbound call (default 10)
    country_code        - Dialling prefix used for phone normalisation (default "254")
    account_prefix      - Prepended to the order id in AccountReference
    timestamp_timezone  - Clock used for the password timestamp (default "UTC")
"""

import base64
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Optional
from urllib.parse import urlparse
from zoneinfo import ZoneInfo

import requests

from stkpay.errors import (
    ConfigurationError,
    InvalidArgument,
    NotFound,
    UpstreamRejected,
    UpstreamUnavailable,
)
from stkpay.providers.base import PaymentProvider, PaymentRequest, PaymentResult
from stkpay.providers.mpesa_auth import DarajaTokenProvider
from stkpay.utils.http import build_session
from stkpay.utils.logger import mask_phone

logger = logging.getLogger(__name__)

# Daraja base URLs
_BASE_URLS = {
    "sandbox":    "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}

# Gateway field limits
ACCOUNT_REFERENCE_MAX = 12
TRANSACTION_DESC_MAX = 13

# errorCode Daraja returns (HTTP 500) while the payer has not answered yet
PROCESSING_ERROR_CODE = "500.001.1001"
# errorCodes meaning "no such CheckoutRequestID"
_UNKNOWN_REQUEST_CODES = ("400.002.02",)

# Common STK ResultCodes, for logs
RESULT_CODE_DESCRIPTIONS: Dict[int, str] = {
    0:    "Success",
    1:    "Insufficient funds",
    17:   "Financial limit reached",
    20:   "Transaction expired",
    26:   "Traffic/system timeout",
    1025: "Error sending push request",
    1032: "Request cancelled by user",
    1037: "Payer unreachable (USSD timeout)",
    2001: "Wrong PIN",
}


def normalise_phone(phone: Any, country_code: str = "254") -> str:
    """
    Normalise a phone number to Safaricom's expected format (2547XXXXXXXX).

    Accepts: +254712345678, 0712345678, 254712345678, 712345678
    """
    if phone is None:
        return ""
    phone = str(phone).strip().replace(" ", "").replace("-", "")
    if phone.startswith("+"):
        phone = phone[1:]
    if not phone:
        return ""
    if phone.startswith("0"):
        phone = country_code + phone[1:]
    elif not phone.startswith(country_code):
        phone = country_code + phone
    return phone


def round_amount(amount: Any) -> int:
    """
    Round to whole currency units, half up (99.4 -> 99, 99.5 -> 100).

    Daraja rejects fractional amounts, so nothing fractional may leave here.
    """
    if amount is None or isinstance(amount, bool):
        raise InvalidArgument("amount is required")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidArgument(f"amount must be a number, got {amount!r}") from exc
    if not value.is_finite():
        raise InvalidArgument(f"amount must be a finite number, got {amount!r}")

    rounded = int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if rounded < 1:
        raise InvalidArgument("amount must be at least 1 after rounding")
    return rounded


def daraja_timestamp(tz_name: str = "UTC", now: Optional[datetime] = None) -> str:
    """YYYYMMDDHHmmss in the configured gateway clock."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).strftime("%Y%m%d%H%M%S")


def generate_password(shortcode: str, passkey: str, timestamp: str) -> str:
    """Password = Base64(BusinessShortCode + Passkey + Timestamp)"""
    raw = f"{shortcode}{passkey}{timestamp}"
    return base64.b64encode(raw.encode("utf-8")).decode("utf-8")


def fold_metadata(items: Any) -> Dict[str, Any]:
    """Fold CallbackMetadata.Item[{Name, Value}] into {Name: Value}."""
    meta: Dict[str, Any] = {}
    if not isinstance(items, list):
        return meta
    for item in items:
        if not isinstance(item, dict) or not item.get("Name"):
            continue
        # Items without a Value (e.g. Balance) are present but empty
        meta[item["Name"]] = item.get("Value")
    return meta


def parse_stk_callback(payload: Any) -> PaymentResult:
    """
    Parse an STK Push callback body.

    Raises:
        InvalidArgument: not a Body.stkCallback envelope, or no usable
            correlation id / result code
    """
    if not isinstance(payload, dict):
        raise InvalidArgument("callback body must be a JSON object")

    body = payload.get("Body")
    stk = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(stk, dict):
        raise InvalidArgument("callback body is missing Body.stkCallback")

    checkout_id = stk.get("CheckoutRequestID") or None
    merchant_id = stk.get("MerchantRequestID") or None
    if not checkout_id and not merchant_id:
        raise InvalidArgument("callback carries neither CheckoutRequestID nor MerchantRequestID")

    try:
        result_code = int(stk.get("ResultCode"))
    except (TypeError, ValueError) as exc:
        raise InvalidArgument(f"callback ResultCode is not an integer: {stk.get('ResultCode')!r}") from exc

    callback_metadata = stk.get("CallbackMetadata")
    metadata = fold_metadata(callback_metadata.get("Item") if isinstance(callback_metadata, dict) else None)

    result = PaymentResult(
        merchant_request_id=merchant_id,
        checkout_request_id=checkout_id,
        result_code=result_code,
        result_description=stk.get("ResultDesc"),
        metadata=metadata,
    )
    if result.succeeded:
        result.receipt_number = metadata.get("MpesaReceiptNumber")
        result.transaction_amount = metadata.get("Amount")
        result.transaction_date = metadata.get("TransactionDate")
        result.payer_phone = metadata.get("PhoneNumber")
    return result


# Provider

class MPesaProvider(PaymentProvider):
    """M-Pesa (Daraja API) STK Push adapter."""

    # Daraja endpoint paths
    _EP_STK_PUSH  = "/mpesa/stkpush/v1/processrequest"
    _EP_STK_QUERY = "/mpesa/stkpushquery/v1/query"

    def __init__(
        self,
        config: Dict[str, Any],
        session: Optional[requests.Session] = None,
        token_provider: Optional[DarajaTokenProvider] = None,
    ):
        super().__init__(config)

        self.consumer_key     = config.get("consumer_key") or ""
        self.consumer_secret  = config.get("consumer_secret") or ""
        self.shortcode        = str(config.get("shortcode") or "")
        self.passkey          = config.get("passkey") or ""
        self.callback_url     = config.get("callback_url") or ""
        self.environment      = (config.get("environment") or "sandbox").lower()
        self.transaction_type = config.get("transaction_type") or "CustomerPayBillOnline"
        self.timeout          = float(config.get("timeout") or 10)
        self.country_code     = str(config.get("country_code") or "254")
        self.account_prefix   = config.get("account_prefix") or ""
        self.timestamp_tz     = config.get("timestamp_timezone") or "UTC"

        if not self.consumer_key or not self.consumer_secret:
            raise ConfigurationError("MPesaProvider: 'consumer_key' and 'consumer_secret' are required")
        if not self.shortcode or not self.passkey:
            raise ConfigurationError("MPesaProvider: 'shortcode' and 'passkey' are required")
        if config.get("base_url"):
            self.base_url = config["base_url"].rstrip("/")
        elif self.environment in _BASE_URLS:
            self.base_url = _BASE_URLS[self.environment]
        else:
            raise ConfigurationError(
                f"MPesaProvider: environment must be 'sandbox' or 'production', got '{self.environment}'"
            )

        self._session = session or build_session()
        self.token_provider = token_provider or DarajaTokenProvider(
            self.base_url,
            self.consumer_key,
            self.consumer_secret,
            session=self._session,
            timeout=self.timeout,
        )

    # PaymentProvider ABC

    def initiate_payment(
        self,
        phone_number: str,
        amount: Any,
        order_id: str,
        description: Optional[str] = None,
    ) -> PaymentRequest:
        """
        Send an STK push to the payer's phone.

        Returns as soon as Daraja acknowledges the request; the payment
        outcome is delivered later to callback_url.
        """
        if not phone_number:
            raise InvalidArgument("phoneNumber is required")
        if amount is None or amount == "":
            raise InvalidArgument("amount is required")
        if not order_id:
            raise InvalidArgument("orderId is required")

        phone = normalise_phone(phone_number, self.country_code)
        if not phone[len(self.country_code):].isdigit():
            raise InvalidArgument(f"phoneNumber is not a valid mobile number: {phone_number!r}")
        whole_amount = round_amount(amount)
        self._assert_callback_url()

        account_reference = f"{self.account_prefix}{order_id}"[:ACCOUNT_REFERENCE_MAX]
        tx_desc = (description or f"Order {order_id}")[:TRANSACTION_DESC_MAX]
        timestamp = daraja_timestamp(self.timestamp_tz)

        payload = {
            "BusinessShortCode": self.shortcode,
            "Password":          generate_password(self.shortcode, self.passkey, timestamp),
            "Timestamp":         timestamp,
            "TransactionType":   self.transaction_type,
            "Amount":            whole_amount,
            "PartyA":            phone,
            "PartyB":            self.shortcode,
            "PhoneNumber":       phone,
            "CallBackURL":       self.callback_url,
            "AccountReference":  account_reference,
            "TransactionDesc":   tx_desc,
        }

        logger.info(
            "Initiating STK push for order %s: %s KES to %s",
            order_id, whole_amount, mask_phone(phone)
        )
        resp = self._post(self._EP_STK_PUSH, payload, context="stk_push")

        response_code = str(resp.get("ResponseCode", ""))
        if response_code != "0":
            raise UpstreamRejected(
                f"MPesaProvider [stk_push]: request not accepted - "
                f"{resp.get('ResponseDescription') or resp.get('errorMessage') or 'no description'}",
                error_code=response_code or resp.get("errorCode"),
                details={"raw_response": resp},
            )
        if not resp.get("CheckoutRequestID"):
            raise UpstreamRejected(
                "MPesaProvider [stk_push]: acknowledgement has no CheckoutRequestID",
                details={"raw_response": resp},
            )

        logger.info(
            "STK push accepted for order %s: CheckoutRequestID=%s MerchantRequestID=%s",
            order_id, resp.get("CheckoutRequestID"), resp.get("MerchantRequestID")
        )

        return PaymentRequest(
            merchant_request_id=resp.get("MerchantRequestID", ""),
            checkout_request_id=resp["CheckoutRequestID"],
            phone_number=phone,
            amount=whole_amount,
            account_reference=account_reference,
            description=tx_desc,
            response_code=response_code,
            response_description=resp.get("ResponseDescription"),
            customer_message=resp.get("CustomerMessage"),
        )

    def query_payment(self, checkout_request_id: str) -> Dict[str, Any]:
        """
        Query the status of an STK Push transaction using CheckoutRequestID.

        Returns a dict whose status is 'pending', 'paid' or 'payment_failed'.
        """
        if not checkout_request_id:
            raise InvalidArgument("checkoutRequestId is required")

        timestamp = daraja_timestamp(self.timestamp_tz)
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password":          generate_password(self.shortcode, self.passkey, timestamp),
            "Timestamp":         timestamp,
            "CheckoutRequestID": checkout_request_id,
        }

        try:
            resp = self._post(self._EP_STK_QUERY, payload, context="stk_query")
        except UpstreamUnavailable as exc:
            if exc.error_code == PROCESSING_ERROR_CODE:
                return self._pending_result(checkout_request_id, exc)
            raise
        except UpstreamRejected as exc:
            if exc.error_code in _UNKNOWN_REQUEST_CODES:
                raise NotFound(
                    f"M-Pesa does not recognise CheckoutRequestID {checkout_request_id}",
                    error_code=exc.error_code,
                ) from exc
            raise

        raw_code = resp.get("ResultCode")
        if raw_code is None or raw_code == "":
            return self._pending_result(checkout_request_id, None, resp)

        try:
            result_code = int(raw_code)
        except (TypeError, ValueError):
            logger.warning("STK query for %s returned odd ResultCode %r", checkout_request_id, raw_code)
            return self._pending_result(checkout_request_id, None, resp)

        return {
            "status":              "paid" if result_code == 0 else "payment_failed",
            "checkout_request_id": resp.get("CheckoutRequestID", checkout_request_id),
            "merchant_request_id": resp.get("MerchantRequestID"),
            "result_code":         result_code,
            "result_description":  resp.get("ResultDesc"),
            "raw_response":        resp,
        }

    def parse_callback(self, payload: Dict[str, Any]) -> PaymentResult:
        return parse_stk_callback(payload)

    # Private - helpers

    @staticmethod
    def _pending_result(checkout_request_id, exc=None, resp=None) -> Dict[str, Any]:
        return {
            "status":              "pending",
            "checkout_request_id": checkout_request_id,
            "merchant_request_id": (resp or {}).get("MerchantRequestID"),
            "result_code":         None,
            "result_description":  exc.message if exc else (resp or {}).get("ResponseDescription"),
            "raw_response":        resp if resp is not None else (exc.details.get("raw_response") if exc else None),
        }

    def _assert_callback_url(self) -> None:
        parsed = urlparse(self.callback_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(
                "MPesaProvider: 'callback_url' must be a publicly reachable absolute URL"
            )

    def _post(self, endpoint: str, payload: Dict[str, Any], context: str = "") -> Dict[str, Any]:
        """Execute an authenticated POST to a Daraja endpoint."""
        token = self.token_provider.get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type":  "application/json",
        }

        url = f"{self.base_url}{endpoint}"
        try:
            resp = self._session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise UpstreamUnavailable(
                f"MPesaProvider [{context}]: no response within {self.timeout}s"
            ) from exc
        except requests.RequestException as exc:
            raise UpstreamUnavailable(
                f"MPesaProvider [{context}]: network error - {exc}"
            ) from exc

        return self._handle_response(resp, context)

    def _handle_response(self, resp: requests.Response, context: str) -> Dict[str, Any]:
        """Parse a Daraja response, raising on HTTP errors."""
        try:
            data: Dict[str, Any] = resp.json()
        except ValueError:
            data = {"raw": resp.text}
        if not isinstance(data, dict):
            data = {"raw": data}

        logger.debug("MPesa [%s] HTTP %s: %s", context, resp.status_code, data)

        error_code = data.get("errorCode")
        error_msg = (
            data.get("errorMessage")
            or data.get("ResponseDescription")
            or data.get("ResultDesc")
            or resp.text[:300]
        )

        if resp.status_code >= 500:
            raise UpstreamUnavailable(
                f"MPesaProvider [{context}] HTTP {resp.status_code}: {error_msg}",
                error_code=error_code,
                details={"raw_response": data},
            )
        if not resp.ok:
            raise UpstreamRejected(
                f"MPesaProvider [{context}] HTTP {resp.status_code}: {error_msg}",
                error_code=error_code,
                details={"raw_response": data},
            )

        return data
