from __future__ import annotations

import base64
from dataclasses import dataclass
import json
import logging
from typing import Protocol
from urllib import error as urlerror
from urllib import parse as urlparse
from urllib import request as urlrequest

from app.core.config import settings
from app.core.errors import ProviderUnavailable
from app.core.security import mask_phone

logger = logging.getLogger(__name__)

CHANNELS = ("sms", "whatsapp")


@dataclass(frozen=True)
class SendResult:
    accepted: bool
    reference: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class CheckResult:
    approved: bool
    error: str | None = None


class OtpProviderAdapter(Protocol):
    provider_code: str

    def send(self, phone_number: str, channel: str) -> SendResult:
        ...

    def check(self, phone_number: str, code: str) -> CheckResult:
        ...


class _ProviderHttpError(Exception):
    def __init__(self, status_code: int, payload: dict):
        self.status_code = status_code
        self.payload = payload
        super().__init__(f"HTTP {status_code}: {payload}")


def _http_form_post(url: str, payload: dict[str, str], *, headers: dict[str, str], timeout: float) -> dict:
    body = urlparse.urlencode(payload).encode("utf-8")
    req_headers = {"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"}
    req_headers.update(headers)
    req = urlrequest.Request(url=url, method="POST", data=body, headers=req_headers)
    try:
        with urlrequest.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except urlerror.HTTPError as exc:
        raw = exc.read().decode("utf-8", errors="replace")
        try:
            parsed = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            parsed = {"message": raw}
        raise _ProviderHttpError(exc.code, parsed) from exc
    except (urlerror.URLError, TimeoutError, OSError) as exc:
        raise ProviderUnavailable(context={"reason": type(exc).__name__}) from exc
    return json.loads(raw) if raw else {}


class TwilioVerifyProvider:
    """Adaptador del servicio Twilio Verify (API REST v2).

    Twilio genera, entrega y compara el codigo; aqui solo se piden envios y
    chequeos. Errores de transporte o timeout se reportan como
    ``ProviderUnavailable``; un 4xx del proveedor es un rechazo.
    """

    provider_code = "twilio"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        service_sid: str,
        *,
        base_url: str = "https://verify.twilio.com/v2",
        timeout: float = 10.0,
    ):
        self.service_sid = service_sid
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        raw = f"{account_sid}:{auth_token}".encode("utf-8")
        self._auth_header = "Basic " + base64.b64encode(raw).decode("ascii")

    def _post(self, path: str, payload: dict[str, str]) -> dict:
        url = f"{self.base_url}/Services/{self.service_sid}/{path}"
        try:
            return _http_form_post(url, payload, headers={"Authorization": self._auth_header}, timeout=self.timeout)
        except _ProviderHttpError as exc:
            if exc.status_code >= 500:
                raise ProviderUnavailable(context={"status": exc.status_code}) from exc
            raise

    def send(self, phone_number: str, channel: str) -> SendResult:
        try:
            data = self._post("Verifications", {"To": phone_number, "Channel": channel})
        except _ProviderHttpError as exc:
            message = str(exc.payload.get("message") or f"HTTP {exc.status_code}")
            return SendResult(accepted=False, error=message)
        status = data.get("status")
        if status == "pending":
            return SendResult(accepted=True, reference=data.get("sid"))
        return SendResult(accepted=False, reference=data.get("sid"), error=f"estado inesperado: {status}")

    def check(self, phone_number: str, code: str) -> CheckResult:
        try:
            data = self._post("VerificationCheck", {"To": phone_number, "Code": code})
        except _ProviderHttpError as exc:
            # 404: no hay codigo pendiente para ese numero
            message = str(exc.payload.get("message") or f"HTTP {exc.status_code}")
            return CheckResult(approved=False, error=message)
        if data.get("status") == "approved":
            return CheckResult(approved=True)
        return CheckResult(approved=False, error=f"estado: {data.get('status')}")


class DevOtpProvider:
    """Proveedor para ENV=dev: no envia nada y aprueba solo el codigo fijo."""

    provider_code = "dev"

    def __init__(self, dev_code: str):
        self.dev_code = dev_code

    def send(self, phone_number: str, channel: str) -> SendResult:
        logger.info("OTP dev: envio simulado via %s a %s", channel, mask_phone(phone_number))
        return SendResult(accepted=True, reference="dev")

    def check(self, phone_number: str, code: str) -> CheckResult:
        if code == self.dev_code:
            return CheckResult(approved=True)
        return CheckResult(approved=False, error="codigo incorrecto")


def get_otp_provider(provider_code: str | None = None) -> OtpProviderAdapter:
    code = (provider_code or settings.OTP_PROVIDER or "twilio").strip().lower()
    if code == "dev":
        if settings.ENV != "dev":
            raise RuntimeError("OTP_PROVIDER=dev solo esta permitido con ENV=dev")
        return DevOtpProvider(settings.OTP_DEV_CODE)
    if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_VERIFY_SERVICE_SID):
        raise RuntimeError("Faltan TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN / TWILIO_VERIFY_SERVICE_SID")
    return TwilioVerifyProvider(
        settings.TWILIO_ACCOUNT_SID,
        settings.TWILIO_AUTH_TOKEN,
        settings.TWILIO_VERIFY_SERVICE_SID,
        base_url=settings.TWILIO_VERIFY_BASE_URL,
        timeout=settings.OTP_PROVIDER_TIMEOUT_SECONDS,
    )
