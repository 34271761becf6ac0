from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple

import httpx


@dataclass
class DeliveryResult:
    ok: bool
    channel: str = ""
    via: str = ""
    error: str = ""


TransportStep = Tuple[str, Callable[[], Awaitable[DeliveryResult]]]


async def deliver_first_success(channel: str, steps: Sequence[TransportStep], logger) -> DeliveryResult:
    """Try each transport in order and stop at the first one that delivers."""
    errors = []
    for name, send in steps:
        try:
            result = await send()
        except Exception as exc:
            logger.warning("%s transport %s raised: %s", channel, name, exc)
            errors.append(f"{name}: {exc}")
            continue
        if result.ok:
            logger.info("%s delivered via %s", channel, name)
            return DeliveryResult(ok=True, channel=channel, via=name)
        logger.info("%s transport %s failed: %s", channel, name, result.error)
        errors.append(f"{name}: {result.error}")
    return DeliveryResult(ok=False, channel=channel, error="; ".join(errors) or "no transport available")


class HttpChannel:
    """Shared plumbing for channels that talk HTTP, directly or through a relay."""

    CHANNEL = "http"

    def __init__(
        self,
        logger,
        *,
        proxy_url: str = "",
        proxy_secret: str = "",
        request_timeout_seconds: float = 15,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ) -> None:
        self.logger = logger
        self.proxy_url = str(proxy_url or "").strip()
        self.proxy_secret = str(proxy_secret or "").strip()
        self.request_timeout_seconds = request_timeout_seconds
        self._client_factory = client_factory or (lambda: httpx.AsyncClient(timeout=self.request_timeout_seconds))

    def _debug(self, message: str, **meta: Any) -> None:
        suffix = " | " + ", ".join(f"{k}={v}" for k, v in meta.items()) if meta else ""
        self.logger.debug("[DEBUG][%s] %s%s", self.CHANNEL, message, suffix)

    async def _relay(self, body: Dict[str, Any]) -> DeliveryResult:
        async with self._client_factory() as client:
            response = await client.post(
                self.proxy_url,
                json=body,
                headers={"X-Proxy-Secret": self.proxy_secret},
            )
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.is_success and isinstance(data, dict) and data.get("ok"):
            return DeliveryResult(ok=True)
        error = data.get("error") if isinstance(data, dict) else ""
        return DeliveryResult(ok=False, error=str(error or f"relay returned HTTP {response.status_code}"))

    def _steps(self, relay: Optional[Callable[[], Awaitable[DeliveryResult]]], direct: Callable[[], Awaitable[DeliveryResult]]):
        steps = []
        if self.proxy_url and relay is not None:
            steps.append(("relay", relay))
        steps.append(("direct", direct))
        return steps
