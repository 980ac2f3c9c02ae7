from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Optional


@dataclass
class PaymentRequest:
    """Synchronous acknowledgement of an accepted STK push."""
    merchant_request_id: str
    checkout_request_id: str
    phone_number: str
    amount: int
    account_reference: str
    description: str
    response_code: str = '0'
    response_description: Optional[str] = None
    customer_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_response(self) -> Dict[str, Any]:
        return {
            'checkout_request_id': self.checkout_request_id,
            'merchant_request_id': self.merchant_request_id,
            'response_code': self.response_code,
            'response_description': self.response_description,
            'customer_message': self.customer_message,
        }


@dataclass
class PaymentResult:
    """Final outcome delivered by the provider's asynchronous callback."""
    merchant_request_id: Optional[str]
    checkout_request_id: Optional[str]
    result_code: int
    result_description: Optional[str] = None
    receipt_number: Optional[str] = None
    transaction_amount: Optional[Any] = None
    transaction_date: Optional[Any] = None
    payer_phone: Optional[Any] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0

    @property
    def status(self) -> str:
        return 'paid' if self.succeeded else 'payment_failed'

    def to_details(self) -> Dict[str, Any]:
        return {
            'provider': 'mpesa',
            'checkout_request_id': self.checkout_request_id,
            'merchant_request_id': self.merchant_request_id,
            'result_code': self.result_code,
            'result_description': self.result_description,
            'receipt_number': self.receipt_number,
            'amount': self.transaction_amount,
            'transaction_date': self.transaction_date,
            'phone_number': self.payer_phone,
            'metadata': self.metadata,
        }


class PaymentProvider(ABC):
    """Abstract base class for push-payment providers"""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize provider with configuration

        Args:
            config: Provider-specific configuration
        """
        self.config = config
        self.provider_name = self.__class__.__name__.replace('Provider', '').lower()

    @abstractmethod
    def initiate_payment(
            self,
            phone_number: str,
            amount: Any,
            order_id: str,
            description: Optional[str] = None
    ) -> PaymentRequest:
        """
        Ask the provider to prompt the payer. Returns as soon as the provider
        has accepted the request; the outcome arrives later on the callback.

        Raises:
            InvalidArgument, UpstreamUnavailable, UpstreamRejected
        """
        pass

    @abstractmethod
    def query_payment(self, checkout_request_id: str) -> Dict[str, Any]:
        """
        Ask the provider directly for the state of an initiated payment

        Returns:
            Dict containing:
                - status: 'pending', 'paid' or 'payment_failed'
                - result_code / result_description: provider values, if any
                - raw_response: the provider body

        Raises:
            NotFound, UpstreamUnavailable
        """
        pass

    @abstractmethod
    def parse_callback(self, payload: Dict[str, Any]) -> PaymentResult:
        """
        Turn a provider callback body into a PaymentResult

        Raises:
            InvalidArgument: if the body is not a recognisable callback
        """
        pass

    def get_provider_name(self) -> str:
        """Get provider name"""
        return self.provider_name
