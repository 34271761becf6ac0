import importlib
import json
import logging
import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

try:
    import cryptography  # noqa: F401
    import fastapi  # noqa: F401
    import httpx  # noqa: F401
    import playwright  # noqa: F401

    DEPS_AVAILABLE = True
except ModuleNotFoundError:  # pragma: no cover - depends on local environment
    DEPS_AVAILABLE = False


@unittest.skipUnless(DEPS_AVAILABLE, "app dependencies not installed in this environment")
class MainConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.options_path = self.root / "options.json"
        self._root_level = logging.getLogger().level

    def tearDown(self) -> None:
        logging.getLogger().setLevel(self._root_level)
        sys.modules.pop("main", None)
        self._tmp.cleanup()

    def _load_main(self, options, env=None):
        self.options_path.write_text(json.dumps(options), encoding="utf-8")
        values = {"OPTIONS_PATH": str(self.options_path), "DATA_DIR": str(self.root / "data")}
        values.update(env or {})
        with mock.patch.dict(os.environ, values):
            if "LOG_LEVEL" not in values:
                os.environ.pop("LOG_LEVEL", None)
            sys.modules.pop("main", None)
            return importlib.import_module("main")

    def test_log_level_from_options_file(self) -> None:
        main = self._load_main({"log_level": "debug"})

        self.assertEqual(main.LOG_LEVEL, "DEBUG")
        self.assertEqual(logging.getLogger().level, logging.DEBUG)

    def test_environment_wins_over_options_file(self) -> None:
        main = self._load_main({"log_level": "debug"}, env={"LOG_LEVEL": "warning"})

        self.assertEqual(main.LOG_LEVEL, "WARNING")
        self.assertEqual(logging.getLogger().level, logging.WARNING)

    def test_missing_config_lists_credential_key(self) -> None:
        main = self._load_main({"portal_base_url": "https://portal.example"})

        self.assertEqual(main.missing_config(), ["credential_key"])


if __name__ == "__main__":
    unittest.main()
