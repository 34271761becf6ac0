import time
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from agents.attendance_agent.models import AttemptStatus, Outcome
from agents.attendance_agent.navigator import LinkHandle, LinkPattern, PageNavigator


AGENT_NAME = "attendance_agent"

ATTENDANCE_KEYWORDS = ("Attendance", "Presensi", "Kehadiran")

# Tried in order; the first strategy with any match wins.
CONTROL_PATTERNS: Sequence[LinkPattern] = (
    LinkPattern(name="activity_container", selector="li.activity a", keywords=ATTENDANCE_KEYWORDS),
    LinkPattern(name="module_url", selector="a", href_contains="/mod/attendance/view.php"),
    LinkPattern(
        name="broad_keyword",
        selector="a",
        keywords=ATTENDANCE_KEYWORDS + ("Absensi", "Absen"),
        case_sensitive=False,
    ),
)

SUBMIT_PATTERNS: Sequence[LinkPattern] = (
    LinkPattern(name="submit_text", selector="a", keywords=("Submit", "Ajukan", "Simpan")),
    LinkPattern(name="submit_url", selector="a", href_contains="/mod/attendance/attendance.php"),
)


class AttendanceEngine:
    """Login -> course -> locate check-in control -> submit, on one browser session per run."""

    def __init__(
        self,
        navigator_factory: Callable[[], PageNavigator],
        screenshot_dir: Path,
        logger,
        *,
        control_patterns: Sequence[LinkPattern] = CONTROL_PATTERNS,
        submit_patterns: Sequence[LinkPattern] = SUBMIT_PATTERNS,
    ) -> None:
        self.navigator_factory = navigator_factory
        self.screenshot_dir = screenshot_dir
        self.logger = logger
        self.control_patterns = tuple(control_patterns)
        self.submit_patterns = tuple(submit_patterns)

    def _debug(self, message: str, **meta: Any) -> None:
        suffix = " | " + ", ".join(f"{k}={v}" for k, v in meta.items()) if meta else ""
        self.logger.debug("[DEBUG][%s] %s%s", AGENT_NAME, message, suffix)

    def _screenshot_path(self, tag: str) -> Path:
        return self.screenshot_dir / f"{tag}_{int(time.time() * 1000)}.png"

    async def _snap(self, navigator: PageNavigator, tag: str) -> Optional[str]:
        path = await navigator.screenshot(self._screenshot_path(tag))
        self.logger.info("Screenshot saved: %s", Path(path).name)
        return path

    async def _login(self, navigator: PageNavigator, username: str, password: str) -> bool:
        await navigator.open_login_page()
        if await navigator.is_logged_in():
            self.logger.info("Portal session already authenticated")
            return True
        self._debug("Submitting credentials", username=username)
        await navigator.submit_credentials(username, password)
        return await navigator.is_logged_in()

    async def locate(self, navigator: PageNavigator, patterns: Sequence[LinkPattern], *, pick_last: bool = True) -> Optional[LinkHandle]:
        for pattern in patterns:
            links = await navigator.list_links(pattern.selector)
            matches: List[LinkHandle] = [link for link in links if pattern.matches(link)]
            if matches:
                chosen = matches[-1] if pick_last else matches[0]
                self._debug("Link located", strategy=pattern.name, matches=len(matches), text=chosen.text)
                return chosen
        return None

    async def run(self, course_url: str, username: str, password: str) -> Outcome:
        """Run the check-in once. Never raises; every path returns an Outcome."""
        navigator: Optional[PageNavigator] = None
        try:
            navigator = self.navigator_factory()
            await navigator.open()

            if not await self._login(navigator, username, password):
                self.logger.warning("Portal login failed for %s", username)
                return Outcome(
                    success=False,
                    status=AttemptStatus.ERROR,
                    message="Login to portal failed",
                    screenshot_path=await self._snap(navigator, "login_failed"),
                )

            self.logger.info("Opening course page")
            await navigator.goto(course_url)

            control = await self.locate(navigator, self.control_patterns, pick_last=True)
            if control is None:
                return Outcome(
                    success=False,
                    status=AttemptStatus.NOT_AVAILABLE,
                    message="Attendance link not found in course page",
                    screenshot_path=await self._snap(navigator, "attendance_not_found"),
                )

            await navigator.goto(control.href)
            submit = await self.locate(navigator, self.submit_patterns, pick_last=False)
            if submit is None:
                return Outcome(
                    success=False,
                    status=AttemptStatus.NOT_AVAILABLE,
                    message="Submit button not found (attendance not yet opened or already closed)",
                    screenshot_path=await self._snap(navigator, "submit_not_available"),
                )

            # Timeouts raised while activating fall through to the fatal handler.
            if not await navigator.activate(submit):
                return Outcome(
                    success=False,
                    status=AttemptStatus.FAILED,
                    message="Save button not found",
                    screenshot_path=await self._snap(navigator, "submit_failed"),
                )

            self.logger.info("Attendance submitted")
            return Outcome(
                success=True,
                status=AttemptStatus.SUCCESS,
                message="Attendance submitted successfully!",
                screenshot_path=await self._snap(navigator, "attendance_success"),
            )

        except Exception as err:
            self.logger.exception("Fatal error during attendance run")
            screenshot = None
            if navigator is not None:
                try:
                    screenshot = await self._snap(navigator, "fatal_error")
                except Exception:
                    self.logger.warning("Could not save fatal error screenshot")
            return Outcome.error(f"Fatal error: {err}", screenshot_path=screenshot)

        finally:
            if navigator is not None:
                try:
                    await navigator.close()
                    self._debug("Browser session released")
                except Exception:
                    self.logger.exception("Failed to release browser session")
