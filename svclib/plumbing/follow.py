"""
Background log followers, used to watch for a service announcing that it's ready.

A `LogWatch` owns two resources: a `tail`/`journalctl` process, and a temporary file receiving
everything that process reads.  Both are released by `LogWatch.close`, which is safe to call more
than once and from outside the code doing the polling (e.g. a signal handler):

    with LogWatch("app", "/var/log/app/app.log") as watch:
        systemd.control("start", "app")
        while not watch.search(pattern):
            time.sleep(1)
"""

import codecs
import logging
import os
import subprocess
import tempfile
from typing import List, Optional, Pattern

from . import files, paths, systemd


LOG = logging.getLogger(__name__)


class LogWatch:
    """
    Follower of either a log file or the journal (when `log_path` is `paths.JOURNAL`) of a unit,
    started from the current end of the stream so that only new lines are seen.
    """

    def __init__(self, service_name: str, log_path: str):
        self.service_name = service_name
        self.log_path = log_path
        self.capture: Optional[str] = None
        self.process: Optional["subprocess.Popen[bytes]"] = None
        self._offset = 0
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._opened = False

    @property
    def journal(self) -> bool:
        return self.log_path == paths.JOURNAL

    @property
    def closed(self) -> bool:
        """
        Whether the watch has been released, either normally or by an out-of-band cleanup.
        """
        return self._opened and self.capture is None

    def _args(self) -> List[str]:
        if self.journal:
            return systemd.follow_journal_args(self.service_name)
        try:
            files.touch(self.log_path)
        except OSError as ex:
            # `tail --retry` copes with a file that only appears later.
            LOG.debug("Couldn't create log file %r: %s", self.log_path, ex)
        return systemd.follow_file_args(self.log_path)

    def open(self) -> "LogWatch":
        """
        Create the capture file and start the follower process in the background.
        """
        if self._opened:
            raise RuntimeError("Watch for {!r} already opened".format(self.service_name))
        self._opened = True
        fd, self.capture = tempfile.mkstemp(prefix="svclib-{}-".format(self.service_name),
                                            suffix=".log")
        try:
            args = self._args()
            LOG.debug("Exec: %r > %r", args, self.capture)
            self.process = subprocess.Popen(args, stdout=fd, stderr=subprocess.DEVNULL,
                                            stdin=subprocess.DEVNULL, start_new_session=True)
        except BaseException:
            self.close()
            raise
        finally:
            os.close(fd)
        return self

    def search(self, pattern: Pattern[str]) -> bool:
        """
        Test if any line captured since the last call matches the pattern.  Incomplete trailing
        lines are kept and searched again once more output arrives.
        """
        path = self.capture
        if not path:
            return False
        try:
            with open(path, "rb") as capture:
                capture.seek(self._offset)
                data = capture.read()
        except FileNotFoundError:
            # Released by `close()` in the meantime.
            return False
        self._offset += len(data)
        text = self._pending + self._decoder.decode(data)
        *lines, self._pending = text.split("\n")
        lines.append(self._pending)
        return any(pattern.search(line) for line in lines)

    def close(self) -> None:
        """
        Stop the follower process and remove the capture file.  Either having already gone away
        is not an error.
        """
        process, self.process = self.process, None
        try:
            if process and process.poll() is None:
                try:
                    process.terminate()
                    process.wait(timeout=5)
                except ProcessLookupError:
                    LOG.debug("Follower %d already exited", process.pid)
                except subprocess.TimeoutExpired:
                    LOG.debug("Follower %d ignored SIGTERM", process.pid)
        finally:
            # Runs even if a signal handler raises while waiting for the follower.
            capture, self.capture = self.capture, None
            if capture:
                try:
                    files.secure_remove(capture)
                except OSError as ex:
                    LOG.debug("Couldn't remove capture file %r: %s", capture, ex)

    def __enter__(self) -> "LogWatch":
        return self.open()

    def __exit__(self, exception_type, exception_value, traceback):
        self.close()
