"""Asaas payment gateway: customers, PIX/boleto/card charges, subscriptions, card tokens."""

import re
from datetime import date, timedelta
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, ServiceUnavailableError, UpstreamError
from app.core.logging import get_logger
from app.core.security import tokens_match

log = get_logger(__name__)

USER_AGENT = "edu-commerce-api/1.0"


class UnknownGatewayValue(ValueError):
    """The gateway sent a value outside the vocabulary this integration knows."""


class AsaasPaymentStatus(str, Enum):
    PENDING = "PENDING"
    RECEIVED = "RECEIVED"
    CONFIRMED = "CONFIRMED"
    OVERDUE = "OVERDUE"
    REFUNDED = "REFUNDED"
    RECEIVED_IN_CASH = "RECEIVED_IN_CASH"
    REFUND_REQUESTED = "REFUND_REQUESTED"
    REFUND_IN_PROGRESS = "REFUND_IN_PROGRESS"
    CHARGEBACK_REQUESTED = "CHARGEBACK_REQUESTED"
    CHARGEBACK_DISPUTE = "CHARGEBACK_DISPUTE"
    AWAITING_CHARGEBACK_REVERSAL = "AWAITING_CHARGEBACK_REVERSAL"
    DUNNING_REQUESTED = "DUNNING_REQUESTED"
    DUNNING_RECEIVED = "DUNNING_RECEIVED"
    AWAITING_RISK_ANALYSIS = "AWAITING_RISK_ANALYSIS"


class AsaasBillingType(str, Enum):
    BOLETO = "BOLETO"
    CREDIT_CARD = "CREDIT_CARD"
    PIX = "PIX"
    UNDEFINED = "UNDEFINED"


class AsaasCycle(str, Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    BIMONTHLY = "BIMONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMIANNUALLY = "SEMIANNUALLY"
    YEARLY = "YEARLY"


class AsaasSubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"


def _coerce(enum_cls: type[Enum], value: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError as e:
        raise UnknownGatewayValue(f"Unknown {enum_cls.__name__} value: {value!r}") from e


def map_payment_status(status: AsaasPaymentStatus | str) -> str:
    match _coerce(AsaasPaymentStatus, status):
        case AsaasPaymentStatus.PENDING:
            return "pending"
        case AsaasPaymentStatus.AWAITING_RISK_ANALYSIS:
            return "processing"
        case AsaasPaymentStatus.CONFIRMED:
            return "confirmed"
        case AsaasPaymentStatus.RECEIVED | AsaasPaymentStatus.RECEIVED_IN_CASH | AsaasPaymentStatus.DUNNING_RECEIVED:
            return "paid"
        case AsaasPaymentStatus.OVERDUE:
            return "overdue"
        case AsaasPaymentStatus.REFUNDED | AsaasPaymentStatus.REFUND_REQUESTED | AsaasPaymentStatus.REFUND_IN_PROGRESS:
            return "refunded"
        case (
            AsaasPaymentStatus.CHARGEBACK_REQUESTED
            | AsaasPaymentStatus.CHARGEBACK_DISPUTE
            | AsaasPaymentStatus.AWAITING_CHARGEBACK_REVERSAL
            | AsaasPaymentStatus.DUNNING_REQUESTED
        ):
            return "failed"
    raise UnknownGatewayValue(f"Unmapped payment status: {status!r}")


def map_subscription_status(status: AsaasSubscriptionStatus | str) -> str:
    match _coerce(AsaasSubscriptionStatus, status):
        case AsaasSubscriptionStatus.ACTIVE:
            return "active"
        case AsaasSubscriptionStatus.INACTIVE:
            return "inactive"
        case AsaasSubscriptionStatus.EXPIRED:
            return "expired"
    raise UnknownGatewayValue(f"Unmapped subscription status: {status!r}")


def map_cycle_to_internal(cycle: AsaasCycle | str) -> str:
    return _coerce(AsaasCycle, cycle).value.lower()


def map_cycle_to_asaas(cycle: str) -> AsaasCycle:
    match cycle:
        case "weekly":
            return AsaasCycle.WEEKLY
        case "biweekly":
            return AsaasCycle.BIWEEKLY
        case "monthly":
            return AsaasCycle.MONTHLY
        case "bimonthly":
            return AsaasCycle.BIMONTHLY
        case "quarterly":
            return AsaasCycle.QUARTERLY
        case "semiannually":
            return AsaasCycle.SEMIANNUALLY
        case "yearly":
            return AsaasCycle.YEARLY
    raise UnknownGatewayValue(f"Unknown billing cycle: {cycle!r}")


def map_method_to_billing_type(method: str) -> AsaasBillingType:
    match method:
        case "pix":
            return AsaasBillingType.PIX
        case "boleto":
            return AsaasBillingType.BOLETO
        case "credit_card":
            return AsaasBillingType.CREDIT_CARD
        case "undefined":
            return AsaasBillingType.UNDEFINED
    raise UnknownGatewayValue(f"Unknown payment method: {method!r}")


def map_billing_type_to_method(billing_type: AsaasBillingType | str) -> str:
    return _coerce(AsaasBillingType, billing_type).value.lower()


def verify_webhook_token(received: str | None, expected: str) -> bool:
    return tokens_match(received, expected)


# Tax IDs (CPF: individuals, CNPJ: companies)

def clean_cpf_cnpj(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def is_valid_cpf(cpf: str) -> bool:
    digits = clean_cpf_cnpj(cpf)
    if len(digits) != 11 or len(set(digits)) == 1:
        return False
    nums = [int(d) for d in digits]
    for pos in (9, 10):
        total = sum(nums[i] * (pos + 1 - i) for i in range(pos))
        check = (total * 10) % 11
        if check == 10:
            check = 0
        if check != nums[pos]:
            return False
    return True


_CNPJ_WEIGHTS_1 = (5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)
_CNPJ_WEIGHTS_2 = (6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)


def is_valid_cnpj(cnpj: str) -> bool:
    digits = clean_cpf_cnpj(cnpj)
    if len(digits) != 14 or len(set(digits)) == 1:
        return False
    nums = [int(d) for d in digits]
    for pos, weights in ((12, _CNPJ_WEIGHTS_1), (13, _CNPJ_WEIGHTS_2)):
        remainder = sum(n * w for n, w in zip(nums[:pos], weights)) % 11
        check = 0 if remainder < 2 else 11 - remainder
        if check != nums[pos]:
            return False
    return True


def cpf_cnpj_type(document: str) -> str:
    digits = clean_cpf_cnpj(document)
    if len(digits) == 11 and is_valid_cpf(digits):
        return "cpf"
    if len(digits) == 14 and is_valid_cnpj(digits):
        return "cnpj"
    return "invalid"


def format_cpf(cpf: str) -> str:
    d = clean_cpf_cnpj(cpf)
    if len(d) != 11:
        return cpf
    return f"{d[:3]}.{d[3:6]}.{d[6:9]}-{d[9:]}"


def format_cnpj(cnpj: str) -> str:
    d = clean_cpf_cnpj(cnpj)
    if len(d) != 14:
        return cnpj
    return f"{d[:2]}.{d[2:5]}.{d[5:8]}/{d[8:12]}-{d[12:]}"


def require_valid_cpf_cnpj(value: str | None) -> str:
    """Return the cleaned tax id ('' when absent); 400 when present but invalid."""
    cleaned = clean_cpf_cnpj(value or "")
    if cleaned and cpf_cnpj_type(cleaned) == "invalid":
        raise BadRequestError("Invalid CPF/CNPJ")
    return cleaned


def default_due_date(days_from_now: int) -> str:
    return (date.today() + timedelta(days=days_from_now)).isoformat()


class CreditCard(BaseModel):
    holder_name: str
    number: str
    expiry_month: str
    expiry_year: str
    ccv: str

    def to_asaas(self) -> dict[str, str]:
        return {
            "holderName": self.holder_name,
            "number": re.sub(r"\D", "", self.number),
            "expiryMonth": self.expiry_month,
            "expiryYear": self.expiry_year,
            "ccv": self.ccv,
        }


class CardHolderInfo(BaseModel):
    name: str
    email: str
    cpf_cnpj: str
    postal_code: str
    address_number: str
    address_complement: str | None = None
    phone: str | None = None

    def to_asaas(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "cpfCnpj": self.cpf_cnpj,
            "postalCode": self.postal_code,
            "addressNumber": self.address_number,
            "addressComplement": self.address_complement,
            "phone": self.phone,
            "mobilePhone": self.phone,
        }


def _drop_none(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


class AsaasClient:
    """Thin async wrapper around the Asaas REST API. No retries; failures surface to the caller."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = settings.asaas_api_key if api_key is None else api_key
        self._base_url = base_url or settings.asaas_base_url
        self._timeout = settings.asaas_timeout_seconds
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "access_token": self._api_key,
            "User-Agent": USER_AGENT,
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self.is_configured():
            raise ServiceUnavailableError("Payment gateway not configured")
        log.info("asaas_request", method=method, endpoint=endpoint)
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                resp = await client.request(
                    method,
                    endpoint,
                    json=_drop_none(json) if json is not None else None,
                    params=params,
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            log.error("asaas_unreachable", method=method, endpoint=endpoint, error=str(e))
            raise UpstreamError("Payment gateway unreachable") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.is_success:
            return data

        errors = data.get("errors") or []
        message = ", ".join(e.get("description", "") for e in errors if e.get("description"))
        log.error("asaas_error", status_code=resp.status_code, endpoint=endpoint, errors=errors)
        raise UpstreamError(
            message or f"Asaas API error: {resp.status_code}",
            details={"status_code": resp.status_code, "gateway_errors": errors},
        )

    # Customers

    async def create_customer(self, customer: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/customers", json=customer)

    async def _first_customer(self, params: dict[str, str]) -> dict[str, Any] | None:
        data = await self._request("GET", "/customers", params=params)
        items = data.get("data") or []
        return items[0] if items else None

    async def find_customer_by_cpf_cnpj(self, cpf_cnpj: str) -> dict[str, Any] | None:
        return await self._first_customer({"cpfCnpj": clean_cpf_cnpj(cpf_cnpj)})

    async def find_customer_by_email(self, email: str) -> dict[str, Any] | None:
        return await self._first_customer({"email": email})

    async def get_or_create_customer(self, customer: dict[str, Any]) -> dict[str, Any]:
        cpf_cnpj = customer.get("cpfCnpj")
        existing = None
        if cpf_cnpj:
            existing = await self.find_customer_by_cpf_cnpj(cpf_cnpj)
        if existing is None and customer.get("email"):
            existing = await self.find_customer_by_email(customer["email"])
        if existing is not None:
            return existing
        return await self.create_customer(customer)

    # Charges

    async def create_payment(self, payment: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/payments", json=payment)

    async def create_pix_payment(
        self,
        customer_id: str,
        value: float,
        description: str | None = None,
        external_reference: str | None = None,
        due_date: str | None = None,
        callback: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self.create_payment({
            "customer": customer_id,
            "billingType": AsaasBillingType.PIX.value,
            "value": value,
            "dueDate": due_date or default_due_date(1),
            "description": description,
            "externalReference": external_reference,
            "callback": callback,
        })

    async def create_boleto_payment(
        self,
        customer_id: str,
        value: float,
        description: str | None = None,
        external_reference: str | None = None,
        due_date: str | None = None,
        discount: dict[str, Any] | None = None,
        fine: dict[str, Any] | None = None,
        interest: dict[str, Any] | None = None,
        callback: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self.create_payment({
            "customer": customer_id,
            "billingType": AsaasBillingType.BOLETO.value,
            "value": value,
            "dueDate": due_date or default_due_date(3),
            "description": description,
            "externalReference": external_reference,
            "discount": discount,
            "fine": fine,
            "interest": interest,
            "callback": callback,
        })

    async def create_credit_card_payment(
        self,
        customer_id: str,
        value: float,
        holder_info: CardHolderInfo,
        credit_card: CreditCard | None = None,
        credit_card_token: str | None = None,
        description: str | None = None,
        external_reference: str | None = None,
        installment_count: int | None = None,
        callback: dict[str, Any] | None = None,
        remote_ip: str | None = None,
    ) -> dict[str, Any]:
        """Charge a card now, either raw card data or a previously tokenized card."""
        if credit_card is None and not credit_card_token:
            raise BadRequestError("Card data or card token is required")
        payload: dict[str, Any] = {
            "customer": customer_id,
            "billingType": AsaasBillingType.CREDIT_CARD.value,
            "value": value,
            "dueDate": default_due_date(0),
            "description": description,
            "externalReference": external_reference,
            "callback": callback,
            "creditCardHolderInfo": holder_info.to_asaas(),
            "remoteIp": remote_ip,
        }
        if installment_count and installment_count > 1:
            payload["installmentCount"] = installment_count
            payload["installmentValue"] = round(value / installment_count, 2)
        if credit_card_token:
            payload["creditCardToken"] = credit_card_token
        else:
            payload["creditCard"] = credit_card.to_asaas()
        return await self.create_payment(payload)

    async def create_undefined_payment(
        self,
        customer_id: str,
        value: float,
        description: str | None = None,
        external_reference: str | None = None,
        due_date: str | None = None,
        callback: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Customer picks the method on the gateway's checkout page."""
        return await self.create_payment({
            "customer": customer_id,
            "billingType": AsaasBillingType.UNDEFINED.value,
            "value": value,
            "dueDate": due_date or default_due_date(3),
            "description": description,
            "externalReference": external_reference,
            "callback": callback,
        })

    async def get_payment(self, payment_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/payments/{payment_id}")

    async def get_pix_qr_code(self, payment_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/payments/{payment_id}/pixQrCode")

    async def get_boleto_identification(self, payment_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/payments/{payment_id}/identificationField")

    async def refund_payment(self, payment_id: str, value: float | None = None, description: str | None = None) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/payments/{payment_id}/refund",
            json={"value": value, "description": description},
        )

    # Subscriptions

    async def create_subscription(self, subscription: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/subscriptions", json=subscription)

    async def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/subscriptions/{subscription_id}")

    async def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/subscriptions/{subscription_id}")

    # Card tokenization

    async def tokenize_credit_card(
        self,
        customer_id: str,
        credit_card: CreditCard,
        holder_info: CardHolderInfo,
        remote_ip: str,
    ) -> dict[str, Any]:
        """Returns {creditCardNumber, creditCardBrand, creditCardToken}."""
        return await self._request(
            "POST",
            "/creditCard/tokenizeCreditCard",
            json={
                "customer": customer_id,
                "creditCard": credit_card.to_asaas(),
                "creditCardHolderInfo": holder_info.to_asaas(),
                "remoteIp": remote_ip,
            },
        )


def get_asaas_client() -> AsaasClient:
    return AsaasClient()
