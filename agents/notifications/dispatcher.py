import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Dict, List, Optional, Tuple

from agents.attendance_agent.models import AttemptStatus, Outcome, Schedule, UserAccount
from agents.notifications.discord import DiscordNotifier, build_embed, embed_color_for
from agents.notifications.telegram import TelegramNotifier
from agents.notifications.transport import DeliveryResult
from agents.notifications.whatsapp import WhatsAppNotifier


STATUS_EMOJI = {
    AttemptStatus.SUCCESS: "✅",
    AttemptStatus.FAILED: "❌",
    AttemptStatus.NOT_AVAILABLE: "ℹ️",
    AttemptStatus.TIMEOUT: "⏰",
    AttemptStatus.ERROR: "⚠️",
}
REPORT_TITLE = "Auto Attendance Report"
SCREENSHOT_ROUTE = "/attendance-agent/screenshots"


def status_emoji(status: AttemptStatus) -> str:
    return STATUS_EMOJI.get(status, "❓")


def build_text_report(course_name: str, outcome: Outcome) -> str:
    return (
        f"{status_emoji(outcome.status)} *{REPORT_TITLE}*\n\n"
        f"📚 Course: {course_name}\n"
        f"📊 Status: {outcome.status.value}\n"
        f"💬 {outcome.message}"
    )


def build_link_report(course_name: str, outcome: Outcome, screenshot_url: str = "") -> str:
    text = (
        f"{status_emoji(outcome.status)} *{REPORT_TITLE}*\n\n"
        f"📚 *Course:* {course_name}\n"
        f"📊 *Status:* {outcome.status.value}\n"
        f"💬 *Message:* {outcome.message}"
    )
    if screenshot_url:
        text += f"\n\n📸 Screenshot: {screenshot_url}"
    return text


class NotificationDispatcher:
    """Fans one attendance outcome out to every active channel of the owner."""

    def __init__(
        self,
        telegram: Optional[TelegramNotifier],
        discord: Optional[DiscordNotifier],
        whatsapp: Optional[WhatsAppNotifier],
        logger,
        *,
        public_base_url: str = "",
    ) -> None:
        self.telegram = telegram
        self.discord = discord
        self.whatsapp = whatsapp
        self.logger = logger
        self.public_base_url = str(public_base_url or "").rstrip("/")

    @staticmethod
    def _existing_screenshot(outcome: Outcome) -> Optional[Path]:
        if not outcome.screenshot_path:
            return None
        path = Path(outcome.screenshot_path)
        return path if path.exists() else None

    def screenshot_url(self, outcome: Outcome) -> str:
        path = self._existing_screenshot(outcome)
        if path is None or not self.public_base_url:
            return ""
        return f"{self.public_base_url}{SCREENSHOT_ROUTE}/{path.name}"

    def has_channels(self, user: UserAccount) -> bool:
        return any(user.channel(name) for name in ("telegram", "discord", "whatsapp"))

    async def _send_telegram(self, chat_id: str, token: str, course_name: str, outcome: Outcome) -> DeliveryResult:
        screenshot = self._existing_screenshot(outcome)
        if screenshot is not None:
            try:
                photo = await self.telegram.send_photo(chat_id, str(screenshot), token, caption=f"📸 Screenshot: {course_name}")
                if not photo.ok:
                    self.logger.warning("Telegram screenshot not delivered: %s", photo.error)
            except Exception:
                self.logger.exception("Telegram screenshot delivery raised; sending text anyway")
        return await self.telegram.send_message(chat_id, build_text_report(course_name, outcome), token)

    async def _send_discord(self, webhook_url: str, course_name: str, outcome: Outcome) -> DeliveryResult:
        embed = build_embed(
            title=f"{status_emoji(outcome.status)} {REPORT_TITLE}",
            color=embed_color_for(outcome.status),
            fields=[
                {"name": "📚 Course", "value": course_name, "inline": True},
                {"name": "📊 Status", "value": outcome.status.value, "inline": True},
                {"name": "💬 Message", "value": outcome.message},
            ],
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        screenshot = self._existing_screenshot(outcome)
        if screenshot is not None:
            return await self.discord.send_embed_with_image(webhook_url, embed, str(screenshot))
        return await self.discord.send_embed(webhook_url, embed)

    async def _send_whatsapp(self, phone_number: str, course_name: str, outcome: Outcome) -> DeliveryResult:
        text = build_link_report(course_name, outcome, self.screenshot_url(outcome))
        return await self.whatsapp.send_message(phone_number, text)

    async def dispatch(
        self,
        user: UserAccount,
        schedule: Optional[Schedule],
        course_name: str,
        outcome: Outcome,
    ) -> Dict[str, DeliveryResult]:
        """Send to each configured channel; never raises."""
        jobs: List[Tuple[str, Awaitable[DeliveryResult]]] = []

        telegram_cfg = user.channel("telegram")
        if telegram_cfg and self.telegram is not None:
            token = telegram_cfg.token
            if schedule is not None and schedule.use_separate_channel_token and schedule.custom_token:
                token = schedule.custom_token
            jobs.append(("telegram", self._send_telegram(telegram_cfg.destination, token, course_name, outcome)))

        discord_cfg = user.channel("discord")
        if discord_cfg and self.discord is not None:
            jobs.append(("discord", self._send_discord(discord_cfg.destination, course_name, outcome)))

        whatsapp_cfg = user.channel("whatsapp")
        if whatsapp_cfg and self.whatsapp is not None:
            jobs.append(("whatsapp", self._send_whatsapp(whatsapp_cfg.destination, course_name, outcome)))

        if not jobs:
            self.logger.debug("No notification channels configured for user %s", user.id)
            return {}

        results: Dict[str, DeliveryResult] = {}
        gathered = await asyncio.gather(*(job for _, job in jobs), return_exceptions=True)
        for (name, _), result in zip(jobs, gathered):
            if isinstance(result, BaseException):
                self.logger.error("Notification via %s raised: %s", name, result)
                results[name] = DeliveryResult(ok=False, channel=name, error=str(result))
                continue
            if not result.ok:
                self.logger.warning("Notification via %s failed: %s", name, result.error)
            results[name] = result
        return results
