"""
Scripts to install, remove and control an application's systemd service.
"""

import logging

from .utils import DocOptArgs, entrypoint, get_int
from ..tasks import service


LOG = logging.getLogger(__name__)


@entrypoint
def action(opts: DocOptArgs):
    """
    Run a lifecycle action against a service, optionally waiting for a line in its logs.

    Usage: {script} [options]

    Options:
      --service_name=NAME  service to act on, defaults to $APP
      --action=ACTION      one of start, stop, restart or reload [default: start]
      --line_match=TEXT    wait until a log line matches this expression
      --log_path=PATH      log file to watch, or "systemd" to read the journal
      --timeout=SECONDS    how long to wait for the line [default: 300]
      --length=LINES       how many log lines to show on failure [default: 20]
    """
    result = service.service_action(opts["--service_name"], opts["--action"],
                                    opts["--line_match"], opts["--log_path"],
                                    get_int(opts, "--timeout"), get_int(opts, "--length"))
    LOG.debug("%s", result)


@entrypoint
def add_config(opts: DocOptArgs):
    """
    Install a service's unit file from a template, and enable it.

    Usage: {script} [options]

    Options:
      --service_name=NAME  service to install, defaults to the application identifier
      --template=NAME      template file in the configuration directory [default: systemd]
      --final_path=PATH    installation directory, defaults to $FINAL_PATH
      --app=APP            application identifier, defaults to $APP
    """
    result = service.add_config(opts["--service_name"], opts["--template"],
                                opts["--final_path"], opts["--app"])
    LOG.debug("%s", result)


@entrypoint
def remove_config(opts: DocOptArgs):
    """
    Stop and disable a service, and remove its unit file.

    Usage: {script} [options]

    Options:
      --service_name=NAME  service to remove, defaults to $APP
    """
    result = service.remove_config(opts["--service_name"])
    LOG.debug("%s", result)
