"""
Installation and lifecycle of an application's systemd service.

Unit files are rendered from templates kept alongside the packaging scripts.  The fixed tokens
`__FINALPATH__` (installation directory) and `__APP__` (application identifier) are substituted,
and everything else is copied as is, so shell snippets like `${#args[@]}` or `{{` are left alone.
A template that uses a token for which no value was given can't be rendered, and fails before
anything is written.
"""

from contextlib import ExitStack
from enum import Enum
import logging
import os
import re
from subprocess import CalledProcessError
import sys
import time
from typing import Optional, Pattern, TextIO

from jinja2 import (Environment, FileSystemLoader, StrictUndefined, TemplateNotFound,
                    TemplateSyntaxError, UndefinedError)

from ..plumbing import files, paths, systemd
from ..plumbing.common import Collect, Result, State
from ..plumbing.follow import LogWatch


LOG = logging.getLogger(__name__)

TOKENS = {"__FINALPATH__": "final_path", "__APP__": "app"}
"""
Fixed placeholder tokens, and the template fields they stand for.
"""

_PROGRESS = {"start": "starting", "stop": "stopping", "restart": "restarting",
             "reload-or-restart": "reloading"}

# NUL never occurs in a unit file, so no template syntax besides the tokens can match.
_DELIMITERS = {"block_start_string": "\0%", "block_end_string": "%\0",
               "variable_start_string": "\0{", "variable_end_string": "}\0",
               "comment_start_string": "\0#", "comment_end_string": "#\0"}


class _TemplateLoader(FileSystemLoader):
    """
    Loader translating fixed placeholder tokens into template fields.
    """

    def get_source(self, environment, template):
        source, filename, uptodate = super().get_source(environment, template)
        for token, field in TOKENS.items():
            source = source.replace(token, "{} {} {}".format(environment.variable_start_string,
                                                             field,
                                                             environment.variable_end_string))
        return source, filename, uptodate


class WaitOutcome(Enum):
    """
    How waiting for a service's readiness line ended.
    """

    not_waited = 0
    """
    No readiness line was requested.
    """
    matched = 1
    """
    The readiness line was seen in the service's logs.
    """
    timed_out = 2
    """
    The readiness line wasn't seen in time, the service may still be starting.
    """
    aborted = 3
    """
    The log watch was released by someone else while waiting.
    """


class ActionRequest:
    """
    Validated parameters of a lifecycle action against a service.
    """

    def __init__(self, service_name: str, action: str = "start", line_match: Optional[str] = None,
                 log_path: Optional[str] = None, timeout: int = paths.TIMEOUT,
                 length: int = paths.LENGTH):
        if not service_name:
            raise ValueError("No service name given")
        # Raises ValueError on unknown actions.
        systemd.get_action(action)
        if timeout <= 0:
            raise ValueError("Timeout must be positive, got {}".format(timeout))
        if length < 0:
            raise ValueError("Length must not be negative, got {}".format(length))
        self.service_name = service_name
        self.action = action
        self.line_match = line_match or None
        self.log_path = log_path or os.path.join(paths.LOG_DIR, service_name,
                                                 "{}.log".format(service_name))
        self.timeout = timeout
        self.length = length

    @property
    def verb(self) -> str:
        """
        Action as passed to `systemctl`.
        """
        return systemd.get_action(self.action)

    @property
    def pattern(self) -> Optional[Pattern[str]]:
        """
        Compiled readiness line, matched literally if it isn't a valid regular expression.
        """
        if not self.line_match:
            return None
        try:
            return re.compile(self.line_match)
        except re.error:
            return re.compile(re.escape(self.line_match))

    def __repr__(self):
        return "<{}: {} {} {!r}>".format(self.__class__.__name__, self.action, self.service_name,
                                         self.line_match)


def _get_service_name(service_name: Optional[str]) -> str:
    name = service_name or os.getenv("APP")
    if not name:
        raise ValueError("No service name given, and no application identifier set")
    return name


def render_template(template: str = "systemd", final_path: Optional[str] = None,
                    app: Optional[str] = None) -> str:
    """
    Render a unit file template from the template directory.  Names without a suffix are taken to
    be `.service` files, i.e. the default `systemd` template is read from `systemd.service`.
    """
    if not os.path.splitext(template)[1]:
        template = "{}.service".format(template)
    env = Environment(loader=_TemplateLoader(paths.TEMPLATE_DIR), undefined=StrictUndefined,
                      keep_trailing_newline=True, **_DELIMITERS)
    context = {key: value for key, value in (("final_path", final_path), ("app", app)) if value}
    try:
        return env.get_template(template).render(context)
    except TemplateNotFound as ex:
        raise FileNotFoundError("No template {!r} in {!r}"
                                .format(template, paths.TEMPLATE_DIR)) from ex
    except (TemplateSyntaxError, UndefinedError) as ex:
        raise ValueError("Can't render template {!r}: {}".format(template, ex)) from ex


@Result.collect_value
def add_config(service_name: Optional[str] = None, template: str = "systemd",
               final_path: Optional[str] = None, app: Optional[str] = None) -> Collect[str]:
    """
    Install a unit file from a template, and register it to start at boot.

    A unit file which was edited by hand since its last installation is backed up before being
    overwritten.
    """
    app = app or os.getenv("APP")
    final_path = final_path or os.getenv("FINAL_PATH")
    service_name = _get_service_name(service_name or app)
    content = render_template(template, final_path, app)
    path = systemd.get_unit_path(service_name)
    if os.path.exists(path):
        yield files.backup_if_changed(path)
    yield files.write(path, content)
    yield files.store_checksum(path)
    yield files.set_root_owner(path)
    yield systemd.enable(service_name)
    yield systemd.daemon_reload()
    return path


@Result.collect
def remove_config(service_name: Optional[str] = None) -> Collect[None]:
    """
    Stop and unregister a service, and delete its unit file.  Does nothing if no unit file is
    installed.
    """
    service_name = _get_service_name(service_name)
    path = systemd.get_unit_path(service_name)
    if not os.path.exists(path):
        LOG.debug("No unit file for %s, nothing to remove", service_name)
        return
    yield service_action(service_name, "stop")
    yield systemd.disable(service_name)
    yield files.secure_remove(path)
    yield files.forget_checksum(path)
    yield systemd.daemon_reload()


def _log_diagnostics(request: ActionRequest) -> None:
    """
    Print the end of a service's journal, and of its log file if it has one.
    """
    try:
        journal = systemd.get_journal(request.service_name, request.length)
    except (CalledProcessError, OSError, RuntimeError) as ex:
        LOG.debug("Couldn't read journal of %s: %s", request.service_name, ex)
    else:
        LOG.warning("Last journal entries of %s:\n%s", request.service_name, journal.rstrip("\n"))
    if request.log_path != paths.JOURNAL and os.path.isfile(request.log_path):
        LOG.warning("Last lines of %s:\n%s", request.log_path,
                    files.get_tail(request.log_path, request.length).rstrip("\n"))


def wait_for_line(watch: LogWatch, request: ActionRequest,
                  stream: Optional[TextIO] = None) -> WaitOutcome:
    """
    Poll a log watch once a second until the request's readiness line shows up, or the timeout
    runs out.  From the third attempt onwards, progress dots are written to `stream`.
    """
    if stream is None:
        stream = sys.stderr
    pattern = request.pattern
    outcome = WaitOutcome.timed_out
    waited = 0
    for attempt in range(1, request.timeout + 1):
        if watch.closed:
            outcome = WaitOutcome.aborted
            break
        if watch.search(pattern):
            outcome = WaitOutcome.matched
            break
        if attempt == 3:
            stream.write("Please wait, the service {} is {}".format(
                request.service_name, _PROGRESS[request.verb]))
        if attempt >= 3:
            stream.write(".")
            stream.flush()
            waited += 1
        time.sleep(1)
    if waited:
        stream.write("\n")
        stream.flush()
    return outcome


def _run(request: ActionRequest, stream: Optional[TextIO] = None) -> Result[WaitOutcome]:
    verb = request.verb
    with ExitStack() as stack:
        watch = None
        if request.line_match:
            # Follow before acting, so lines written during startup aren't missed.
            watch = stack.enter_context(LogWatch(request.service_name, request.log_path))
        LOG.debug("Running %r", request)
        try:
            systemd.control(verb, request.service_name)
        except CalledProcessError:
            LOG.warning("Failed to %s service %s", verb, request.service_name)
            _log_diagnostics(request)
            raise
        if not watch:
            return Result(State.success, WaitOutcome.not_waited)
        outcome = wait_for_line(watch, request, stream)
    if outcome is WaitOutcome.matched:
        LOG.info("Service %s has completed action %s", request.service_name, verb)
    elif outcome is WaitOutcome.timed_out:
        LOG.warning("Service %s didn't complete action %s within %d seconds",
                    request.service_name, verb, request.timeout)
        _log_diagnostics(request)
    else:
        LOG.debug("Stopped waiting for service %s", request.service_name)
    return Result(State.success, outcome)


def service_action(service_name: Optional[str] = None, action: str = "start",
                   line_match: Optional[str] = None, log_path: Optional[str] = None,
                   timeout: int = paths.TIMEOUT, length: int = paths.LENGTH,
                   stream: Optional[TextIO] = None) -> Result[WaitOutcome]:
    """
    Start, stop, restart or reload a service, optionally waiting for a line matching `line_match`
    to appear in its logs.

    Logs are read from the file at `log_path`, or from the unit's journal if `log_path` is
    `"systemd"`.  Failing to run the action raises `CalledProcessError` after printing the end of
    the service's logs.  Not seeing the line within `timeout` seconds only logs a warning.

    The log follower and its capture file are released however this returns, including on
    `KeyboardInterrupt` or `SystemExit` raised by a signal handler while waiting.
    """
    request = ActionRequest(_get_service_name(service_name), action, line_match, log_path,
                            timeout, length)
    return _run(request, stream)
