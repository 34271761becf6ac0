import asyncio
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from playwright.async_api import async_playwright


LOGGED_IN_MARKER = ".logininfo a[href*='logout.php']"
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--mute-audio",
    "--no-first-run",
]
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class LinkHandle:
    href: str
    text: str


@dataclass(frozen=True)
class LinkPattern:
    """One way of recognising a link: a CSS scope plus text and/or href tests."""

    name: str
    selector: str = "a"
    keywords: Tuple[str, ...] = ()
    href_contains: str = ""
    case_sensitive: bool = True

    def matches(self, link: LinkHandle) -> bool:
        if not link.href:
            return False
        if self.href_contains and self.href_contains not in link.href:
            return False
        if self.keywords:
            text = link.text if self.case_sensitive else link.text.lower()
            keywords = self.keywords if self.case_sensitive else tuple(k.lower() for k in self.keywords)
            if not any(k in text for k in keywords):
                return False
        return True


class PageNavigator:
    """Browser capability driven by the attendance engine.

    One instance owns one browser session: ``open`` starts it and ``close``
    releases it. Implementations raise on navigation errors and timeouts.
    """

    async def open(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    async def open_login_page(self) -> None:
        raise NotImplementedError

    async def is_logged_in(self) -> bool:
        raise NotImplementedError

    async def submit_credentials(self, username: str, password: str) -> None:
        raise NotImplementedError

    async def goto(self, url: str) -> None:
        raise NotImplementedError

    async def list_links(self, selector: str) -> List[LinkHandle]:
        raise NotImplementedError

    async def activate(self, link: LinkHandle) -> bool:
        """Open the submit link, pick the first status and save. False when the save button is missing."""
        raise NotImplementedError

    async def screenshot(self, path: Path) -> str:
        raise NotImplementedError


def sanitize_url_for_log(raw_url: str) -> str:
    if not raw_url:
        return raw_url
    try:
        parts = urlsplit(raw_url)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    except Exception:
        return raw_url


class PlaywrightNavigator(PageNavigator):
    """PageNavigator on Playwright's async API (headless Chromium)."""

    def __init__(
        self,
        base_url: str,
        logger,
        *,
        headless: bool = True,
        navigation_timeout_ms: int = 30_000,
    ) -> None:
        self.base_url = str(base_url or "").rstrip("/")
        self.logger = logger
        self.headless = headless
        self.navigation_timeout_ms = navigation_timeout_ms
        self._playwright = None
        self._browser = None
        self._context = None
        self.page = None

    async def _ensure_playwright_browsers(self) -> bool:
        command = [sys.executable, "-m", "playwright", "install", "chromium"]
        self.logger.warning("Chromium not found; attempting automatic install")
        try:
            await asyncio.to_thread(
                subprocess.run,
                command,
                check=True,
                timeout=900,
                text=True,
                capture_output=True,
            )
            self.logger.info("Automatic Chromium install completed")
            return True
        except Exception:
            self.logger.exception("Could not install Chromium at runtime")
            return False

    @staticmethod
    def _is_playwright_executable_error(error: Exception) -> bool:
        return "Executable doesn't exist" in str(error)

    async def _launch_browser(self):
        try:
            return await self._playwright.chromium.launch(headless=self.headless, args=BROWSER_ARGS)
        except Exception as err:
            if not self._is_playwright_executable_error(err):
                raise
            if not await self._ensure_playwright_browsers():
                raise
            return await self._playwright.chromium.launch(headless=self.headless, args=BROWSER_ARGS)

    async def open(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._launch_browser()
        self._context = await self._browser.new_context(
            viewport={"width": 1280, "height": 720},
            user_agent=USER_AGENT,
        )
        self._context.set_default_timeout(self.navigation_timeout_ms)
        self.page = await self._context.new_page()
        self.logger.debug("Browser session opened")

    async def close(self) -> None:
        errors: List[Exception] = []
        for label, closer in (
            ("context", self._context.close if self._context else None),
            ("browser", self._browser.close if self._browser else None),
            ("playwright", self._playwright.stop if self._playwright else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as exc:
                self.logger.warning("Failed to close %s: %s", label, exc)
                errors.append(exc)
        self._context = None
        self._browser = None
        self._playwright = None
        self.page = None
        if errors:
            raise RuntimeError(f"Browser cleanup incomplete ({len(errors)} errors)") from errors[0]

    async def open_login_page(self) -> None:
        await self.goto(f"{self.base_url}/login/index.php")

    async def is_logged_in(self) -> bool:
        return await self.page.query_selector(LOGGED_IN_MARKER) is not None

    async def submit_credentials(self, username: str, password: str) -> None:
        await self.page.fill("#username", username)
        await self.page.fill("#password", password)
        async with self.page.expect_navigation(wait_until="networkidle", timeout=self.navigation_timeout_ms):
            await self.page.click("#loginbtn")

    async def goto(self, url: str) -> None:
        self.logger.debug("Navigating to %s", sanitize_url_for_log(url))
        await self.page.goto(url, wait_until="networkidle", timeout=self.navigation_timeout_ms)

    async def list_links(self, selector: str) -> List[LinkHandle]:
        raw: List[Dict[str, Any]] = await self.page.eval_on_selector_all(
            selector,
            "els => els.map(e => ({href: e.href || '', text: (e.textContent || '').trim()}))",
        )
        return [LinkHandle(href=str(item.get("href", "")), text=str(item.get("text", ""))) for item in raw or []]

    async def activate(self, link: LinkHandle) -> bool:
        await self.goto(link.href)
        radios = self.page.locator("input[type='radio']")
        if await radios.count() > 0:
            # First option is "Hadir" (Present).
            await radios.first.check()
            self.logger.debug("Selected first attendance status")
        save = self.page.locator("#id_submitbutton")
        if await save.count() == 0:
            return False
        await save.first.click()
        await self.page.wait_for_load_state("networkidle", timeout=self.navigation_timeout_ms)
        return True

    async def screenshot(self, path: Path) -> str:
        if self.page is None:
            raise RuntimeError("Page not initialized")
        path.parent.mkdir(parents=True, exist_ok=True)
        await self.page.screenshot(path=str(path), full_page=False)
        try:
            path.with_suffix(".html").write_text(await self.page.content(), encoding="utf-8")
        except Exception:
            self.logger.exception("Could not save HTML snapshot next to %s", path.name)
        return str(path)
