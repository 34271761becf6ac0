import logging
import tempfile
import unittest
from pathlib import Path

try:
    from agents.attendance_agent.engine import AttendanceEngine
    from agents.attendance_agent.models import AttemptStatus
    from agents.attendance_agent.navigator import LinkHandle, PageNavigator

    DEPS_AVAILABLE = True
except ModuleNotFoundError:  # pragma: no cover - depends on local environment
    PageNavigator = object  # type: ignore[assignment,misc]
    DEPS_AVAILABLE = False


COURSE_URL = "https://portal.example/course/view.php?id=42"
VIEW_1 = "https://portal.example/mod/attendance/view.php?id=1"
VIEW_2 = "https://portal.example/mod/attendance/view.php?id=2"
SUBMIT_URL = "https://portal.example/mod/attendance/attendance.php?sessid=7&sesskey=x"


class _FakeNavigator(PageNavigator):
    """Scripted portal: ``pages`` maps url -> {selector: [LinkHandle, ...]}."""

    def __init__(
        self,
        pages=None,
        *,
        logged_in=False,
        login_succeeds=True,
        activate_result=True,
        activate_error=None,
        goto_error=None,
        close_error=None,
    ):
        self.pages = pages or {}
        self.logged_in = logged_in
        self.login_succeeds = login_succeeds
        self.activate_result = activate_result
        self.activate_error = activate_error
        self.goto_error = goto_error
        self.close_error = close_error
        self.current = ""
        self.opened = 0
        self.closed = 0
        self.credentials_submitted = []
        self.visited = []
        self.activated = []
        self.screenshots = []

    async def open(self):
        self.opened += 1

    async def close(self):
        self.closed += 1
        if self.close_error:
            raise self.close_error

    async def open_login_page(self):
        self.current = "login"

    async def is_logged_in(self):
        return self.logged_in

    async def submit_credentials(self, username, password):
        self.credentials_submitted.append((username, password))
        self.logged_in = self.login_succeeds

    async def goto(self, url):
        if self.goto_error:
            raise self.goto_error
        self.visited.append(url)
        self.current = url

    async def list_links(self, selector):
        return list(self.pages.get(self.current, {}).get(selector, []))

    async def activate(self, link):
        self.activated.append(link)
        if self.activate_error:
            raise self.activate_error
        return self.activate_result

    async def screenshot(self, path: Path):
        self.screenshots.append(path.name)
        return str(path)


def _portal_pages():
    week_1 = LinkHandle(href=VIEW_1, text="Attendance week 1")
    week_2 = LinkHandle(href=VIEW_2, text="Attendance week 2")
    submit = LinkHandle(href=SUBMIT_URL, text="Submit attendance")
    return {
        COURSE_URL: {"li.activity a": [week_1, week_2], "a": [week_1, week_2]},
        VIEW_2: {"a": [submit, LinkHandle(href=SUBMIT_URL + "&other=1", text="Submit attendance")]},
    }


@unittest.skipUnless(DEPS_AVAILABLE, "playwright/pydantic not installed in this environment")
class AttendanceEngineTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.screenshot_dir = Path(self._tmp.name)
        self.logger = logging.getLogger("tests.attendance_engine")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _engine(self, navigator):
        return AttendanceEngine(lambda: navigator, self.screenshot_dir, self.logger)

    async def test_successful_check_in(self) -> None:
        navigator = _FakeNavigator(_portal_pages())
        outcome = await self._engine(navigator).run(COURSE_URL, "student", "pw")

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.status, AttemptStatus.SUCCESS)
        self.assertEqual(outcome.message, "Attendance submitted successfully!")
        self.assertEqual(navigator.credentials_submitted, [("student", "pw")])
        # Latest control on the course page, first submit link on the attendance page.
        self.assertEqual(navigator.visited, [COURSE_URL, VIEW_2])
        self.assertEqual(navigator.activated[0].href, SUBMIT_URL)
        self.assertTrue(Path(outcome.screenshot_path).name.startswith("attendance_success_"))
        self.assertEqual((navigator.opened, navigator.closed), (1, 1))

    async def test_existing_session_skips_credentials(self) -> None:
        navigator = _FakeNavigator(_portal_pages(), logged_in=True)
        outcome = await self._engine(navigator).run(COURSE_URL, "student", "pw")

        self.assertEqual(outcome.status, AttemptStatus.SUCCESS)
        self.assertEqual(navigator.credentials_submitted, [])

    async def test_login_failure_is_error(self) -> None:
        navigator = _FakeNavigator(_portal_pages(), login_succeeds=False)
        outcome = await self._engine(navigator).run(COURSE_URL, "student", "bad")

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.status, AttemptStatus.ERROR)
        self.assertEqual(outcome.message, "Login to portal failed")
        self.assertEqual(navigator.visited, [])
        self.assertIsNotNone(outcome.screenshot_path)
        self.assertEqual(navigator.closed, 1)

    async def test_missing_control_is_not_available(self) -> None:
        navigator = _FakeNavigator({COURSE_URL: {"a": [LinkHandle(href="https://portal.example/mod/forum/view.php?id=3", text="Forum")]}})
        outcome = await self._engine(navigator).run(COURSE_URL, "student", "pw")

        self.assertEqual(outcome.status, AttemptStatus.NOT_AVAILABLE)
        self.assertEqual(outcome.message, "Attendance link not found in course page")
        self.assertEqual(navigator.activated, [])
        self.assertTrue(navigator.screenshots[0].startswith("attendance_not_found_"))
        self.assertEqual(navigator.closed, 1)

    async def test_broad_keyword_fallback_is_case_insensitive(self) -> None:
        absensi = LinkHandle(href="https://portal.example/mod/page/view.php?id=9", text="absensi pertemuan 5")
        pages = {
            COURSE_URL: {"a": [absensi]},
            absensi.href: {"a": [LinkHandle(href=SUBMIT_URL, text="Simpan")]},
        }
        navigator = _FakeNavigator(pages)
        outcome = await self._engine(navigator).run(COURSE_URL, "student", "pw")

        self.assertEqual(outcome.status, AttemptStatus.SUCCESS)
        self.assertEqual(navigator.visited, [COURSE_URL, absensi.href])

    async def test_missing_submit_is_not_available(self) -> None:
        pages = _portal_pages()
        pages[VIEW_2] = {"a": [LinkHandle(href="https://portal.example/mod/attendance/report.php", text="Report")]}
        navigator = _FakeNavigator(pages)
        outcome = await self._engine(navigator).run(COURSE_URL, "student", "pw")

        self.assertEqual(outcome.status, AttemptStatus.NOT_AVAILABLE)
        self.assertIn("Submit button not found", outcome.message)
        self.assertEqual(navigator.activated, [])

    async def test_missing_save_button_is_failed(self) -> None:
        navigator = _FakeNavigator(_portal_pages(), activate_result=False)
        outcome = await self._engine(navigator).run(COURSE_URL, "student", "pw")

        self.assertEqual(outcome.status, AttemptStatus.FAILED)
        self.assertEqual(outcome.message, "Save button not found")
        self.assertIsNotNone(outcome.screenshot_path)

    async def test_activation_timeout_is_error(self) -> None:
        navigator = _FakeNavigator(
            _portal_pages(),
            activate_error=TimeoutError("Timeout 30000ms exceeded navigating to submit page"),
        )
        outcome = await self._engine(navigator).run(COURSE_URL, "student", "pw")

        self.assertEqual(outcome.status, AttemptStatus.ERROR)
        self.assertTrue(outcome.message.startswith("Fatal error: "))
        self.assertIn("Timeout 30000ms", outcome.message)
        self.assertTrue(Path(outcome.screenshot_path).name.startswith("fatal_error_"))
        self.assertEqual(navigator.closed, 1)

    async def test_navigation_error_is_fatal_error(self) -> None:
        navigator = _FakeNavigator(_portal_pages(), goto_error=RuntimeError("net::ERR_TIMED_OUT"))
        outcome = await self._engine(navigator).run(COURSE_URL, "student", "pw")

        self.assertEqual(outcome.status, AttemptStatus.ERROR)
        self.assertTrue(outcome.message.startswith("Fatal error: "))
        self.assertIn("net::ERR_TIMED_OUT", outcome.message)
        self.assertTrue(Path(outcome.screenshot_path).name.startswith("fatal_error_"))
        self.assertEqual(navigator.closed, 1)

    async def test_cleanup_failure_does_not_change_outcome(self) -> None:
        navigator = _FakeNavigator(_portal_pages(), close_error=RuntimeError("browser already gone"))
        outcome = await self._engine(navigator).run(COURSE_URL, "student", "pw")

        self.assertEqual(outcome.status, AttemptStatus.SUCCESS)
        self.assertEqual(navigator.closed, 1)

    async def test_factory_failure_is_error_outcome(self) -> None:
        def broken_factory():
            raise RuntimeError("no browser available")

        engine = AttendanceEngine(broken_factory, self.screenshot_dir, self.logger)
        outcome = await engine.run(COURSE_URL, "student", "pw")

        self.assertEqual(outcome.status, AttemptStatus.ERROR)
        self.assertIsNone(outcome.screenshot_path)


if __name__ == "__main__":
    unittest.main()
