import os
import tempfile
import unittest

from modules.constants_classes import WORLD_STILL_MISSING
from modules.errors import FatalConfigurationError
from modules.guard import PreflightGuard
from modules.serverstate import PreflightFailure
from tests.helpers import make_config, write_tree


class GuardTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)

    def make_guard(self, sleep=None, **settings):
        config = make_config(self._tmp.name, **settings)
        if sleep is None:
            return PreflightGuard(config)
        return PreflightGuard(config, sleep=sleep)


class ClassifyTests(GuardTestCase):
    def test_known_failure_lines(self):
        guard = self.make_guard()
        self.assertIs(
            PreflightFailure.EULA,
            guard.classify_line("[INFO] You need to agree to the EULA in order to run the server."),
        )
        self.assertIs(
            PreflightFailure.WORLD, guard.classify_line("[ERROR] Failed to load level world")
        )
        self.assertIsNone(guard.classify_line("[INFO] Preparing spawn area: 42%"))

    def test_ready_lines(self):
        guard = self.make_guard()
        self.assertTrue(guard.is_ready_line('[INFO] Done (3.2s)! For help, type "help"'))
        self.assertTrue(guard.is_ready_line("[INFO] Server started."))
        self.assertFalse(guard.is_ready_line("[INFO] Starting Server"))

    def test_exit_without_accepted_eula(self):
        guard = self.make_guard()
        self.assertIs(PreflightFailure.EULA, guard.classify_exit())

        guard.accept_eula()
        self.assertIsNone(guard.classify_exit())

    def test_bedrock_needs_no_eula(self):
        guard = self.make_guard()
        write_tree(guard.config.server_dir, {"bedrock_server": b""})
        self.assertFalse(guard.eula_required())
        self.assertIsNone(guard.classify_exit())

    def test_eula_check_can_be_disabled(self):
        guard = self.make_guard(eula_file="")
        self.assertFalse(guard.eula_required())


class AcceptEulaTests(GuardTestCase):
    def test_creates_accepted_eula(self):
        guard = self.make_guard()

        self.assertTrue(guard.accept_eula())

        self.assertTrue(guard.eula_accepted())

    def test_rewrites_rejected_eula_keeping_comments(self):
        guard = self.make_guard()
        with open(guard.eula_path, "w") as f:
            f.write("#Tue Jan 02 10:00:00 UTC 2024\neula=false\n")

        self.assertTrue(guard.accept_eula())

        with open(guard.eula_path) as f:
            text = f.read()
        self.assertIn("#Tue Jan 02 10:00:00 UTC 2024", text)
        self.assertNotIn("eula=false", text)
        self.assertTrue(guard.eula_accepted())

    def test_accepting_twice_changes_nothing(self):
        guard = self.make_guard()
        guard.accept_eula()
        with open(guard.eula_path) as f:
            before = f.read()

        self.assertFalse(guard.accept_eula())

        with open(guard.eula_path) as f:
            self.assertEqual(before, f.read())


class WaitForWorldTests(GuardTestCase, unittest.IsolatedAsyncioTestCase):
    async def test_existing_world_returns_immediately(self):
        delays = []

        async def sleep(delay):
            delays.append(delay)

        guard = self.make_guard(sleep=sleep)
        os.makedirs(guard.world_path)

        await guard.wait_for_world()

        self.assertEqual([], delays)

    async def test_world_appearing_during_backoff(self):
        delays = []
        guard = None

        async def sleep(delay):
            delays.append(delay)
            if len(delays) == 3:
                os.makedirs(guard.world_path)

        guard = self.make_guard(sleep=sleep, world_backoff=1.0)

        await guard.wait_for_world()

        self.assertEqual([1.0, 2.0, 4.0], delays)

    async def test_gives_up_after_retries(self):
        delays = []

        async def sleep(delay):
            delays.append(delay)

        guard = self.make_guard(sleep=sleep, world_retries=3, world_backoff=0.5)

        with self.assertRaises(FatalConfigurationError) as cm:
            await guard.wait_for_world()

        self.assertEqual(WORLD_STILL_MISSING, str(cm.exception))
        self.assertEqual([0.5, 1.0, 2.0], delays)


if __name__ == "__main__":
    unittest.main()
