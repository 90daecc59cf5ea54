import os
import os.path
import re
import shutil
import subprocess
import tempfile
import time
import unittest
from unittest.mock import Mock, patch

from svclib.plumbing import follow
from svclib.plumbing.follow import LogWatch


_POPEN = subprocess.Popen


def fake_process(running: bool = True) -> Mock:
    process = Mock(spec=_POPEN, pid=4321)
    process.poll.return_value = None if running else 0
    return process


class WatchTestCase(unittest.TestCase):

    def setUp(self):
        self.tempdir = tempfile.TemporaryDirectory()
        self.log = os.path.join(self.tempdir.name, "app.log")
        patcher = patch("{}.subprocess.Popen".format(follow.__spec__.name))
        self.popen = patcher.start()
        self.addCleanup(patcher.stop)
        self.process = fake_process()
        self.popen.return_value = self.process

    def tearDown(self):
        self.tempdir.cleanup()

    def append(self, watch: LogWatch, text: str):
        with open(watch.capture, "a") as capture:
            capture.write(text)


class TestOpen(WatchTestCase):

    def test_file(self):
        with LogWatch("app", self.log) as watch:
            self.assertTrue(os.path.isfile(watch.capture))
            self.assertTrue(os.path.isfile(self.log))
            args = self.popen.call_args[0][0]
            self.assertEqual(args, ["tail", "--follow=name", "--retry", "--lines=0", self.log])
            self.assertTrue(self.popen.call_args[1]["start_new_session"])

    def test_file_missing_dir(self):
        log = os.path.join(self.tempdir.name, "missing", "app.log")
        with LogWatch("app", log):
            self.assertEqual(self.popen.call_args[0][0][-1], log)
        self.assertFalse(os.path.exists(log))

    def test_journal(self):
        with LogWatch("app", "systemd"):
            args = self.popen.call_args[0][0]
            self.assertEqual(args, ["journalctl", "--unit=app", "--follow", "--since=-0",
                                    "--quiet"])
        self.assertFalse(os.path.exists("systemd"))

    def test_open_twice(self):
        with LogWatch("app", self.log) as watch:
            with self.assertRaises(RuntimeError):
                watch.open()

    def test_start_failure(self):
        self.popen.side_effect = FileNotFoundError("tail")
        watch = LogWatch("app", self.log)
        with self.assertRaises(FileNotFoundError):
            watch.open()
        self.assertTrue(watch.closed)


class TestSearch(WatchTestCase):

    def test_match(self):
        with LogWatch("app", self.log) as watch:
            self.append(watch, "Starting...\nReady.\n")
            self.assertTrue(watch.search(re.compile("Ready.")))

    def test_no_match(self):
        with LogWatch("app", self.log) as watch:
            self.append(watch, "Starting...\n")
            self.assertFalse(watch.search(re.compile("Ready")))

    def test_contains(self):
        with LogWatch("app", self.log) as watch:
            self.append(watch, "2026-10-18 INFO Server is Ready to accept connections\n")
            self.assertTrue(watch.search(re.compile("Ready to accept")))

    def test_incremental(self):
        pattern = re.compile("Ready")
        with LogWatch("app", self.log) as watch:
            self.append(watch, "Starting...\n")
            self.assertFalse(watch.search(pattern))
            self.append(watch, "Ready\n")
            self.assertTrue(watch.search(pattern))

    def test_split_line(self):
        pattern = re.compile("Ready now")
        with LogWatch("app", self.log) as watch:
            self.append(watch, "Rea")
            self.assertFalse(watch.search(pattern))
            self.append(watch, "dy now\n")
            self.assertTrue(watch.search(pattern))

    def test_not_across_lines(self):
        with LogWatch("app", self.log) as watch:
            self.append(watch, "Ready\nnow\n")
            self.assertFalse(watch.search(re.compile("Ready.now")))

    def test_closed(self):
        watch = LogWatch("app", self.log).open()
        watch.close()
        self.assertFalse(watch.search(re.compile("")))

    def test_capture_removed(self):
        with LogWatch("app", self.log) as watch:
            self.append(watch, "Ready\n")
            os.remove(watch.capture)
            self.assertFalse(watch.search(re.compile("")))


class TestClose(WatchTestCase):

    def test_close(self):
        with LogWatch("app", self.log) as watch:
            capture = watch.capture
        self.process.terminate.assert_called_once_with()
        self.process.wait.assert_called_once_with(timeout=5)
        self.assertFalse(os.path.exists(capture))
        self.assertTrue(watch.closed)

    def test_close_twice(self):
        watch = LogWatch("app", self.log).open()
        watch.close()
        watch.close()
        self.process.terminate.assert_called_once_with()

    def test_close_on_error(self):
        with self.assertRaises(KeyboardInterrupt):
            with LogWatch("app", self.log) as watch:
                capture = watch.capture
                raise KeyboardInterrupt
        self.process.terminate.assert_called_once_with()
        self.assertFalse(os.path.exists(capture))

    def test_already_exited(self):
        self.popen.return_value = process = fake_process(running=False)
        with LogWatch("app", self.log):
            pass
        process.terminate.assert_not_called()

    def test_exited_during_close(self):
        self.process.terminate.side_effect = ProcessLookupError
        with LogWatch("app", self.log) as watch:
            capture = watch.capture
        self.assertFalse(os.path.exists(capture))

    def test_capture_already_removed(self):
        with LogWatch("app", self.log) as watch:
            os.remove(watch.capture)
        self.process.terminate.assert_called_once_with()

    def test_ignores_sigterm(self):
        self.process.wait.side_effect = subprocess.TimeoutExpired("tail", 5)
        with LogWatch("app", self.log) as watch:
            capture = watch.capture
        self.assertFalse(os.path.exists(capture))

    def test_interrupted_during_close(self):
        # As raised by the script signal handlers while waiting for the follower to exit.
        self.process.wait.side_effect = SystemExit(143)
        watch = LogWatch("app", self.log).open()
        capture = watch.capture
        with self.assertRaises(SystemExit):
            watch.close()
        self.assertFalse(os.path.exists(capture))
        self.assertIsNone(watch.capture)
        self.assertTrue(watch.closed)
        watch.close()
        self.process.terminate.assert_called_once_with()


@unittest.skipUnless(shutil.which("tail"), "Requires tail")
class TestRealFollower(unittest.TestCase):

    def setUp(self):
        self.tempdir = tempfile.TemporaryDirectory()
        self.log = os.path.join(self.tempdir.name, "app.log")

    def tearDown(self):
        self.tempdir.cleanup()

    def test_follow(self):
        with open(self.log, "w") as log:
            log.write("Ready from a previous run\n")
        pattern = re.compile("Ready")
        with LogWatch("app", self.log) as watch:
            process = watch.process
            # Give tail a moment to reach the end of the existing content.
            time.sleep(0.5)
            self.assertFalse(watch.search(pattern))
            with open(self.log, "a") as log:
                log.write("Ready\n")
            for _ in range(50):
                if watch.search(pattern):
                    break
                time.sleep(0.1)
            else:
                self.fail("Line not seen")
        self.assertIsNotNone(process.poll())


if __name__ == "__main__":
    unittest.main()
