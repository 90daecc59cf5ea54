"""
Control of systemd units and their journal.
"""

import logging
import os.path
from typing import List

from .common import command, require_command, Result, State
from . import paths


LOG = logging.getLogger(__name__)

ACTIONS = ("start", "stop", "restart", "reload")
"""
Lifecycle actions accepted from callers.
"""


def get_unit_path(service_name: str) -> str:
    """
    Return the location of the unit file for the given service.
    """
    return os.path.join(paths.UNIT_DIR, "{}.service".format(service_name))


def get_action(action: str) -> str:
    """
    Translate a requested action into the verb passed to `systemctl`.

    A plain reload fails against a unit that isn't running, so reloads are always issued as
    `reload-or-restart`.
    """
    if action not in ACTIONS:
        raise ValueError("Unknown action {!r}, expected one of {}"
                         .format(action, "/".join(ACTIONS)))
    return "reload-or-restart" if action == "reload" else action


@require_command("systemctl")
def control(action: str, service_name: str) -> Result[None]:
    """
    Run a `systemctl` verb against a unit, blocking until systemd responds.
    """
    command(["systemctl", action, service_name])
    return Result(State.success)


@require_command("systemctl")
def enable(service_name: str) -> Result[None]:
    """
    Register a unit to start at boot.
    """
    command(["systemctl", "enable", service_name, "--quiet"])
    return Result(State.success)


@require_command("systemctl")
def disable(service_name: str) -> Result[None]:
    """
    Unregister a unit from starting at boot.
    """
    command(["systemctl", "disable", service_name, "--quiet"])
    return Result(State.success)


@require_command("systemctl")
def daemon_reload() -> Result[None]:
    """
    Make systemd pick up changes to unit files on disk.
    """
    command(["systemctl", "daemon-reload"])
    return Result(State.success)


@require_command("journalctl")
def get_journal(service_name: str, lines: int) -> str:
    """
    Fetch the last lines of a unit's journal as plain text.
    """
    proc = command(["journalctl", "--quiet", "--no-hostname", "--no-pager",
                    "--lines={}".format(lines), "--unit={}".format(service_name)], output=True)
    return proc.stdout.decode("utf-8", "replace")


def follow_journal_args(service_name: str) -> List[str]:
    """
    Command line streaming a unit's journal from now on, without replaying history.
    """
    return ["journalctl", "--unit={}".format(service_name), "--follow", "--since=-0", "--quiet"]


def follow_file_args(path: str) -> List[str]:
    """
    Command line streaming lines appended to a file from its current end, waiting for the file to
    appear if it doesn't exist yet.
    """
    return ["tail", "--follow=name", "--retry", "--lines=0", path]
