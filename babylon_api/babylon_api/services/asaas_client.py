"""HTTP client for the Asaas payment gateway REST API."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

import httpx

from babylon_api import __version__
from babylon_api.config import AsaasEnvironment
from babylon_api.errors import GatewayError

logger = logging.getLogger(__name__)

BASE_URLS: dict[AsaasEnvironment, str] = {
    AsaasEnvironment.PRODUCTION: "https://api.asaas.com/v3",
    AsaasEnvironment.SANDBOX: "https://sandbox.asaas.com/api/v3",
}


def base_url_for(environment: AsaasEnvironment | str) -> str:
    """Return the REST base URL for *environment*.

    Anything other than ``production`` resolves to the sandbox.
    """
    try:
        env = AsaasEnvironment(environment)
    except ValueError:
        env = AsaasEnvironment.SANDBOX
    return BASE_URLS[env]


def _first_error_description(response: httpx.Response) -> str | None:
    """Extract ``errors[0].description`` from a gateway error body."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    errors = body.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        description = errors[0].get("description")
        if description:
            return str(description)
    return None


class AsaasClient:
    """Thin async wrapper around the Asaas REST API.

    Unlike best-effort advisory clients, every failure here is raised as
    :class:`GatewayError`: callers must not record local state for a
    gateway resource that was not created.

    Parameters
    ----------
    api_key:
        Gateway API key, sent as the ``access_token`` header.
    environment:
        ``production`` or ``sandbox``; selects the base URL.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional httpx transport, used by tests to stub the gateway.
    """

    def __init__(
        self,
        api_key: str,
        environment: AsaasEnvironment | str = AsaasEnvironment.SANDBOX,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url_for(environment),
            timeout=httpx.Timeout(timeout),
            headers={
                "Content-Type": "application/json",
                "access_token": api_key,
                "User-Agent": f"babylon-fin/{__version__}",
            },
            transport=transport,
        )

    # -- Customers -----------------------------------------------------------

    async def create_customer(
        self,
        *,
        name: str,
        email: str,
        cpf_cnpj: str,
        external_reference: str,
    ) -> dict[str, Any]:
        """Create a gateway customer.

        Calls ``POST /customers``.  The tax id is sent digits-only.
        """
        payload = {
            "name": name,
            "email": email,
            "cpfCnpj": "".join(ch for ch in cpf_cnpj if ch.isdigit()),
            "externalReference": external_reference,
        }
        return await self._request(
            "POST",
            "/customers",
            json=payload,
            fallback_message="Erro ao criar cliente no Asaas",
        )

    # -- Subscriptions -------------------------------------------------------

    async def create_subscription(
        self,
        *,
        customer_id: str,
        billing_type: str,
        value: float,
        next_due_date: date,
        cycle: str,
        description: str,
        external_reference: str,
    ) -> dict[str, Any]:
        """Create a recurring subscription.

        Calls ``POST /subscriptions`` with
        ``notifyPaymentCreatedImmediately`` so the first charge is generated
        right away.
        """
        payload = {
            "customer": customer_id,
            "billingType": billing_type,
            "value": value,
            "nextDueDate": next_due_date.isoformat(),
            "cycle": cycle,
            "description": description,
            "externalReference": external_reference,
            "notifyPaymentCreatedImmediately": True,
        }
        return await self._request(
            "POST",
            "/subscriptions",
            json=payload,
            fallback_message="Erro ao gerar assinatura no Asaas",
        )

    async def list_subscription_payments(self, subscription_id: str) -> list[dict[str, Any]]:
        """Return the charges generated for a subscription (``data`` array)."""
        body = await self._request(
            "GET",
            f"/subscriptions/{subscription_id}/payments",
            fallback_message="Falha ao consultar cobranças da assinatura",
        )
        data = body.get("data")
        return data if isinstance(data, list) else []

    # -- Payments ------------------------------------------------------------

    async def get_payment(self, payment_id: str) -> dict[str, Any]:
        """Fetch a single charge.  Calls ``GET /payments/{id}``."""
        return await self._request(
            "GET",
            f"/payments/{payment_id}",
            fallback_message="Falha ao consultar pagamento",
        )

    async def get_pix_qr_code(self, payment_id: str) -> dict[str, Any]:
        """Fetch the PIX QR code of a charge.

        Calls ``GET /payments/{id}/pixQrCode``; the body carries
        ``encodedImage`` (base64 PNG) and ``payload`` (copy-paste code).
        """
        return await self._request(
            "GET",
            f"/payments/{payment_id}/pixQrCode",
            fallback_message="Falha ao gerar QR Code PIX",
        )

    # -- Lifecycle -----------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    # -- Internals -----------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        fallback_message: str,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request and return the decoded JSON object.

        Raises
        ------
        GatewayError
            On transport failure, a non-2xx status, or a body that is not a
            JSON object.  The gateway's first error description is used as
            the message when present.
        """
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.RequestError as exc:
            logger.warning("Asaas request %s %s failed: %s", method, path, exc)
            raise GatewayError(fallback_message) from exc

        if not response.is_success:
            message = _first_error_description(response) or fallback_message
            logger.warning(
                "Asaas returned %d for %s %s: %s",
                response.status_code,
                method,
                path,
                response.text[:500],
            )
            raise GatewayError(message, status=response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise GatewayError(fallback_message, status=response.status_code) from exc
        if not isinstance(body, dict):
            raise GatewayError(fallback_message, status=response.status_code)
        return body
