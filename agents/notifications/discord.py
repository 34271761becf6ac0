import base64
import json
from pathlib import Path
from typing import Any, Dict, List

from agents.notifications.transport import DeliveryResult, HttpChannel, deliver_first_success


DEFAULT_USERNAME = "Attendance Runner"

COLOR_SUCCESS = 0x57F287
COLOR_WARNING = 0xFEE75C
COLOR_DANGER = 0xED4245
COLOR_INFO = 0x5BC0EB


def build_embed(
    title: str,
    color: int,
    fields: List[Dict[str, Any]],
    timestamp: str,
) -> Dict[str, Any]:
    return {"title": title, "color": color, "fields": fields, "timestamp": timestamp}


class DiscordNotifier(HttpChannel):
    """Webhook client. Embeds with a screenshot go out as one multipart request."""

    CHANNEL = "discord"

    def __init__(self, logger, *, username: str = DEFAULT_USERNAME, **kwargs) -> None:
        super().__init__(logger, **kwargs)
        self.username = username

    @staticmethod
    def _accepted(status_code: int) -> bool:
        return 200 <= status_code < 300

    async def send_embed(self, webhook_url: str, embed: Dict[str, Any]) -> DeliveryResult:
        if not webhook_url:
            return DeliveryResult(ok=False, channel=self.CHANNEL, error="Webhook URL not provided")
        payload = {"username": self.username, "embeds": [embed]}

        async def relay() -> DeliveryResult:
            return await self._relay({"webhookUrl": webhook_url, "payload": payload})

        async def direct() -> DeliveryResult:
            async with self._client_factory() as client:
                response = await client.post(webhook_url, json=payload)
            if self._accepted(response.status_code):
                return DeliveryResult(ok=True)
            return DeliveryResult(ok=False, error=f"Discord API error: {response.status_code} - {response.text}")

        return await deliver_first_success(self.CHANNEL, self._steps(relay, direct), self.logger)

    async def send_embed_with_image(
        self,
        webhook_url: str,
        embed: Dict[str, Any],
        image_path: str,
    ) -> DeliveryResult:
        if not webhook_url:
            return DeliveryResult(ok=False, channel=self.CHANNEL, error="Webhook URL not provided")
        path = Path(image_path)
        if not path.exists():
            self.logger.info("Image %s not found, sending embed without image", path.name)
            return await self.send_embed(webhook_url, embed)

        content = path.read_bytes()
        payload = {
            "username": self.username,
            "embeds": [{**embed, "image": {"url": f"attachment://{path.name}"}}],
        }

        async def relay() -> DeliveryResult:
            return await self._relay(
                {
                    "webhookUrl": webhook_url,
                    "payload": payload,
                    "image": {"base64": base64.b64encode(content).decode("ascii"), "fileName": path.name},
                }
            )

        async def direct() -> DeliveryResult:
            async with self._client_factory() as client:
                response = await client.post(
                    webhook_url,
                    data={"payload_json": json.dumps(payload)},
                    files={"files[0]": (path.name, content, "image/png")},
                )
            if self._accepted(response.status_code):
                return DeliveryResult(ok=True)
            return DeliveryResult(ok=False, error=f"Discord API error: {response.status_code} - {response.text}")

        self._debug("Sending embed with image", image=path.name, bytes=len(content))
        return await deliver_first_success(self.CHANNEL, self._steps(relay, direct), self.logger)


def embed_color_for(status: Any) -> int:
    key = str(getattr(status, "value", status))
    return {
        "SUCCESS": COLOR_SUCCESS,
        "FAILED": COLOR_DANGER,
        "NOT_AVAILABLE": COLOR_INFO,
        "TIMEOUT": COLOR_WARNING,
        "ERROR": COLOR_DANGER,
    }.get(key, COLOR_INFO)
