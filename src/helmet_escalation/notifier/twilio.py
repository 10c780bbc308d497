"""Twilio REST notifier (SMS + voice calls)."""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Optional

import httpx

from .base import SMS, VOICE, DeliveryError, DeliveryReceipt, Notifier, register_notifier
from .metrics import DeliveryMetricsRegistry, get_delivery_registry
from .resilience import BackoffPolicy

logger = logging.getLogger(__name__)

_API_VERSION = "2010-04-01"


class TwilioNotifier(Notifier):
    """Send SMS and place calls through the Twilio ``Messages``/``Calls`` resources.

    Retryable failures (timeouts, transport errors, 408/409/429 and 5xx) are
    retried up to ``max_retries`` times with exponential backoff; everything
    else raises :class:`DeliveryError` straight away.
    """

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any],
        *,
        transport: Optional[httpx.BaseTransport] = None,
        metrics: Optional[DeliveryMetricsRegistry] = None,
    ):
        super().__init__(name, config)
        for key in ("account_sid", "auth_token", "from_number"):
            if not self.config.get(key):
                raise DeliveryError(f"Twilio notifier requires '{key}' in configuration")
        self._transport = transport
        self._metrics = metrics or get_delivery_registry()

    def _endpoint(self, resource: str) -> str:
        api_base = str(self.config.get("api_base", "https://api.twilio.com")).rstrip("/")
        sid = self.config["account_sid"]
        return f"{api_base}/{_API_VERSION}/Accounts/{sid}/{resource}.json"

    def _backoff(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_delay=float(self.config.get("retry_backoff_base", 0.5)),
            max_delay=float(self.config.get("retry_backoff_max", 8.0)),
            jitter=float(self.config.get("retry_jitter", 0.5)),
        )

    @staticmethod
    def _should_retry(exc: httpx.HTTPError) -> bool:
        if isinstance(exc, httpx.TimeoutException):
            return True
        status = getattr(getattr(exc, "response", None), "status_code", None)
        if status is None:
            return isinstance(exc, httpx.TransportError)
        if status in {408, 409, 429}:
            return True
        return status >= 500

    @staticmethod
    def _parse_body(response: httpx.Response, channel: str) -> Mapping[str, Any]:
        """Return the JSON resource, or an empty mapping when a 2xx reply is not JSON."""

        try:
            body = response.json()
        except ValueError:
            logger.warning(
                "Twilio accepted the %s request (HTTP %s) but replied without JSON",
                channel,
                response.status_code,
            )
            return {}
        return body if isinstance(body, dict) else {}

    def _record_success(self, channel: str, start: float) -> None:
        duration_ms = (time.perf_counter() - start) * 1000.0
        self._metrics.record_success(self.name, channel, latency_ms=duration_ms)
        self.circuit_breaker.record_success()

    def _record_failure(self, channel: str, start: float, exc: Exception) -> None:
        duration_ms = (time.perf_counter() - start) * 1000.0
        self._metrics.record_failure(
            self.name,
            channel,
            latency_ms=duration_ms,
            error=exc.__class__.__name__,
        )
        self.circuit_breaker.record_failure()

    def _create(
        self,
        resource: str,
        channel: str,
        destination: str,
        fields: Mapping[str, str],
    ) -> DeliveryReceipt:
        if not destination:
            raise DeliveryError("destination is required", channel=channel)
        self._ensure_circuit_closed(channel, destination)
        url = self._endpoint(resource)
        data = {"To": destination, "From": str(self.config["from_number"]), **fields}
        auth = (str(self.config["account_sid"]), str(self.config["auth_token"]))
        timeout = float(self.config.get("timeout", 10.0))
        retries = int(self.config.get("max_retries", 2))
        backoff = self._backoff()
        last_error: httpx.HTTPError | None = None
        for attempt in range(retries + 1):
            start = time.perf_counter()
            try:
                with httpx.Client(timeout=timeout, auth=auth, transport=self._transport) as client:
                    response = client.post(url, data=data)
                    response.raise_for_status()
                    body = self._parse_body(response, channel)
            except httpx.HTTPError as exc:
                last_error = exc
                self._record_failure(channel, start, exc)
                if attempt >= retries or not self._should_retry(exc):
                    break
                delay = backoff.compute(attempt + 1)
                logger.warning(
                    "Twilio %s to %s failed (%s); retrying in %.2fs",
                    channel,
                    destination,
                    exc.__class__.__name__,
                    delay,
                )
                time.sleep(delay)
                continue
            self._record_success(channel, start)
            return DeliveryReceipt(
                notifier=self.name,
                channel=channel,
                destination=destination,
                provider_id=body.get("sid"),
                status=body.get("status"),
            )
        status = getattr(getattr(last_error, "response", None), "status_code", None)
        raise DeliveryError(
            f"Twilio {channel} request failed: {last_error}",
            channel=channel,
            destination=destination,
            status_code=status,
        ) from last_error

    def send_immediate(self, destination: str, payload: str) -> DeliveryReceipt:
        receipt = self._create("Messages", SMS, destination, {"Body": payload})
        logger.info("SMS sent to %s", destination)
        return receipt

    def send_escalation(self, destination: str, payload: str) -> DeliveryReceipt:
        receipt = self._create("Calls", VOICE, destination, {"Url": payload})
        logger.info("Voice call placed to %s", destination)
        return receipt


register_notifier(
    "twilio",
    factory=TwilioNotifier,
    metadata={"provider": "twilio", "transport": "rest"},
    overwrite=True,
)


__all__ = ["TwilioNotifier"]
