import re

from agents.notifications.transport import DeliveryResult, HttpChannel, deliver_first_success


class WhatsAppNotifier(HttpChannel):
    """Text-only client for a WhatsApp HTTP gateway; images travel as links inside the text."""

    CHANNEL = "whatsapp"

    def __init__(self, api_url: str, api_key: str, logger, **kwargs) -> None:
        super().__init__(logger, **kwargs)
        self.api_url = str(api_url or "").rstrip("/")
        self.api_key = str(api_key or "").strip()

    @staticmethod
    def normalize_number(phone_number: str) -> str:
        return re.sub(r"\D", "", str(phone_number or ""))

    async def send_message(self, phone_number: str, message: str) -> DeliveryResult:
        to = self.normalize_number(phone_number)
        if not to:
            return DeliveryResult(ok=False, channel=self.CHANNEL, error="Phone number not provided")

        async def relay() -> DeliveryResult:
            return await self._relay({"to": to, "message": message})

        async def direct() -> DeliveryResult:
            if not self.api_url:
                return DeliveryResult(ok=False, error="WhatsApp gateway URL not configured")
            async with self._client_factory() as client:
                response = await client.post(
                    f"{self.api_url}/send",
                    json={"to": to, "message": message},
                    headers={"X-API-Key": self.api_key},
                )
            if response.is_success:
                return DeliveryResult(ok=True)
            return DeliveryResult(ok=False, error=f"Gateway error: {response.status_code}")

        self._debug("Sending message", to_suffix=to[-4:], text_chars=len(message))
        return await deliver_first_success(self.CHANNEL, self._steps(relay, direct), self.logger)
