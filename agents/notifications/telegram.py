import base64
import html
from pathlib import Path
from typing import Optional

from agents.notifications.transport import DeliveryResult, HttpChannel, deliver_first_success


TELEGRAM_API = "https://api.telegram.org"


class TelegramNotifier(HttpChannel):
    """Bot API client: relay first when configured, then the Bot API directly."""

    CHANNEL = "telegram"

    def __init__(self, default_token: str, logger, **kwargs) -> None:
        super().__init__(logger, **kwargs)
        self.default_token = str(default_token or "").strip()

    def _resolve_token(self, token: Optional[str]) -> str:
        candidate = str(token or "").strip()
        return candidate or self.default_token

    @staticmethod
    def _to_html(message: str) -> str:
        # Reports use Markdown bold markers; Telegram gets escaped HTML instead.
        # Underscores stay: they appear in status values and course names.
        return html.escape(str(message or "").replace("*", ""), quote=True)

    async def send_message(self, chat_id: str, message: str, token: Optional[str] = None) -> DeliveryResult:
        bot_token = self._resolve_token(token)
        if not bot_token:
            return DeliveryResult(ok=False, channel=self.CHANNEL, error="Bot token not provided")
        text = self._to_html(message)

        async def relay() -> DeliveryResult:
            return await self._relay({"botToken": bot_token, "chatId": chat_id, "text": text})

        async def direct() -> DeliveryResult:
            async with self._client_factory() as client:
                response = await client.post(
                    f"{TELEGRAM_API}/bot{bot_token}/sendMessage",
                    json={"chat_id": chat_id, "text": text, "parse_mode": "HTML"},
                )
            data = response.json()
            if data.get("ok"):
                return DeliveryResult(ok=True)
            return DeliveryResult(ok=False, error=str(data.get("description") or "Telegram API error"))

        self._debug("Sending message", chat_id=chat_id, text_chars=len(text))
        return await deliver_first_success(self.CHANNEL, self._steps(relay, direct), self.logger)

    async def send_photo(
        self,
        chat_id: str,
        photo_path: str,
        token: Optional[str] = None,
        caption: str = "",
    ) -> DeliveryResult:
        bot_token = self._resolve_token(token)
        if not bot_token:
            return DeliveryResult(ok=False, channel=self.CHANNEL, error="Bot token not provided")
        path = Path(photo_path)
        content = path.read_bytes()

        async def relay() -> DeliveryResult:
            return await self._relay(
                {
                    "botToken": bot_token,
                    "chatId": chat_id,
                    "photoBase64": base64.b64encode(content).decode("ascii"),
                    "caption": caption,
                    "filename": path.name,
                }
            )

        async def direct() -> DeliveryResult:
            data_fields = {"chat_id": str(chat_id)}
            if caption:
                data_fields["caption"] = caption
            async with self._client_factory() as client:
                response = await client.post(
                    f"{TELEGRAM_API}/bot{bot_token}/sendPhoto",
                    data=data_fields,
                    files={"photo": (path.name, content, "image/png")},
                )
            data = response.json()
            if data.get("ok"):
                return DeliveryResult(ok=True)
            return DeliveryResult(ok=False, error=str(data.get("description") or "Failed to send photo"))

        self._debug("Sending photo", chat_id=chat_id, photo=path.name, bytes=len(content))
        return await deliver_first_success(self.CHANNEL, self._steps(relay, direct), self.logger)
