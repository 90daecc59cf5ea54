import json
import os
import os.path
import tempfile
import unittest
from unittest.mock import Mock, patch

from svclib.plumbing import files, paths
from svclib.plumbing.common import State


class FilesTestCase(unittest.TestCase):

    def setUp(self):
        self.tempdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tempdir.name, "test.service")
        self.store = os.path.join(self.tempdir.name, "state", "checksums.json")
        self.backups = os.path.join(self.tempdir.name, "backups")
        patcher = patch.multiple(paths, CHECKSUM_STORE=self.store, BACKUP_DIR=self.backups)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        self.tempdir.cleanup()

    def write(self, content: str):
        with open(self.path, "w") as target:
            target.write(content)


class TestChecksum(FilesTestCase):

    def test_checksum(self):
        self.write("test")
        self.assertEqual(files.get_checksum(self.path), "098f6bcd4621d373cade4e832627b4f6")

    def test_store(self):
        self.write("test")
        result = files.store_checksum(self.path)
        self.assertEqual(result.state, State.success)
        with open(self.store) as store:
            self.assertEqual(json.load(store), {self.path: "098f6bcd4621d373cade4e832627b4f6"})

    def test_store_unchanged(self):
        self.write("test")
        files.store_checksum(self.path)
        self.assertEqual(files.store_checksum(self.path).state, State.unchanged)

    def test_stored_missing(self):
        self.assertIsNone(files.get_stored_checksum(self.path))

    def test_forget(self):
        self.write("test")
        files.store_checksum(self.path)
        self.assertEqual(files.forget_checksum(self.path).state, State.success)
        self.assertIsNone(files.get_stored_checksum(self.path))

    def test_forget_unchanged(self):
        self.assertEqual(files.forget_checksum(self.path).state, State.unchanged)

    def test_has_changed(self):
        self.write("test")
        files.store_checksum(self.path)
        self.assertFalse(files.has_changed(self.path))
        self.write("edited")
        self.assertTrue(files.has_changed(self.path))

    def test_has_changed_untracked(self):
        self.write("test")
        self.assertFalse(files.has_changed(self.path))


class TestBackup(FilesTestCase):

    def test_backup_unchanged(self):
        self.write("test")
        files.store_checksum(self.path)
        result = files.backup_if_changed(self.path)
        self.assertEqual(result.state, State.unchanged)
        self.assertFalse(os.path.exists(self.backups))

    @patch("{}.LOG".format(files.__spec__.name))
    def test_backup_changed(self, log: Mock):
        self.write("test")
        files.store_checksum(self.path)
        self.write("edited")
        result = files.backup_if_changed(self.path)
        self.assertEqual(result.state, State.created)
        self.assertTrue(result.value.startswith(os.path.join(self.backups,
                                                             self.path.lstrip("/"))))
        with open(result.value) as backup:
            self.assertEqual(backup.read(), "edited")
        log.warning.assert_called_once()


class TestWrite(FilesTestCase):

    def test_write_created(self):
        self.assertEqual(files.write(self.path, "test").state, State.created)
        with open(self.path) as target:
            self.assertEqual(target.read(), "test")

    def test_write_success(self):
        self.write("old")
        self.assertEqual(files.write(self.path, "new").state, State.success)

    def test_write_unchanged(self):
        self.write("test")
        self.assertEqual(files.write(self.path, "test").state, State.unchanged)

    def test_touch(self):
        self.assertEqual(files.touch(self.path).state, State.created)
        self.assertTrue(os.path.isfile(self.path))
        self.assertEqual(files.touch(self.path).state, State.unchanged)

    def test_root_owner_unprivileged(self):
        if os.geteuid() == 0:
            self.skipTest("Must run as a regular user")
        self.write("test")
        self.assertEqual(files.set_root_owner(self.path).state, State.unchanged)

    def test_root_owner(self):
        if os.geteuid() != 0:
            self.skipTest("Requires chown, must run as root")
        self.write("test")
        files.set_root_owner(self.path)
        stats = os.stat(self.path)
        self.assertEqual((stats.st_uid, stats.st_gid), (0, 0))


class TestRemove(FilesTestCase):

    def test_remove_file(self):
        self.write("test")
        self.assertEqual(files.secure_remove(self.path).state, State.success)
        self.assertFalse(os.path.exists(self.path))

    def test_remove_missing(self):
        self.assertEqual(files.secure_remove(self.path).state, State.unchanged)

    def test_remove_twice(self):
        self.write("test")
        files.secure_remove(self.path)
        self.assertEqual(files.secure_remove(self.path).state, State.unchanged)

    def test_remove_dir(self):
        path = os.path.join(self.tempdir.name, "dir")
        os.makedirs(os.path.join(path, "sub"))
        files.secure_remove(path)
        self.assertFalse(os.path.exists(path))

    def test_remove_protected(self):
        for path in ("", "/", "/etc", "/var/log/", "/usr/../etc"):
            with self.subTest(path=path), self.assertRaises(ValueError):
                files.secure_remove(path)


class TestTail(FilesTestCase):

    def test_tail(self):
        self.write("".join("line {}\n".format(i) for i in range(30)))
        self.assertEqual(files.get_tail(self.path, 3), "line 27\nline 28\nline 29\n")

    def test_tail_short(self):
        self.write("only\n")
        self.assertEqual(files.get_tail(self.path, 20), "only\n")

    def test_tail_zero(self):
        self.write("only\n")
        self.assertEqual(files.get_tail(self.path, 0), "")


if __name__ == "__main__":
    unittest.main()
