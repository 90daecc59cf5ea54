"""
Helpers for converting methods into scripts, called from application packaging steps.
"""

from functools import wraps
from inspect import cleandoc
import logging
import signal
from subprocess import CalledProcessError
import sys
from typing import Any, Callable, Dict, List, Optional, Union

from docopt import docopt


DocOptArgs = Dict[str, Union[bool, str, List[str], None]]


ENTRYPOINTS: List[str] = []

_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


def _interrupt(signum, frame):
    # Unwind the stack so that `with` blocks holding resources get to clean up.
    raise SystemExit(128 + signum)


def entrypoint(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator to make an entrypoint out of a generic function.

    This uses `docopt` to parse arguments according to the method docstring, and will be formatted
    with `{script}` set to the script name.  At minimum, it should contain `Usage: {script}`.

    The function receives the parsed arguments as its only parameter:

        @entrypoint
        def restart(opts: DocOptArgs):
            \"""
            Restart a service.

            Usage: {script} --service_name=NAME
            \"""

    While it runs, termination signals are turned into `SystemExit` so that resources managed by
    context managers are released.  Command failures and invalid arguments are reported on stderr
    and exit with a non-zero status.
    """
    label = "svclib-{}-{}".format(fn.__module__.rsplit(".", 1)[-1],
                                  fn.__qualname__).replace("_", "-")

    @wraps(fn)
    def wrap(opts: Optional[DocOptArgs] = None):
        script = "{} [--debug]".format(label)
        if opts is None:
            doc = cleandoc(fn.__doc__.format(script=script))
            opts = docopt(doc)
        debug = opts.pop("--debug", False)
        logging.basicConfig(level=logging.DEBUG if debug else logging.INFO,
                            format="%(levelname)s: %(message)s")
        previous = {sig: signal.signal(sig, _interrupt) for sig in _SIGNALS}
        try:
            fn(opts)
        except CalledProcessError as ex:
            error("Command {} failed with status {}".format(" ".join(ex.cmd), ex.returncode),
                  exit=ex.returncode or 1)
        except (ValueError, FileNotFoundError) as ex:
            error(str(ex), exit=2)
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
    wrap.__doc__ = wrap.__doc__.format(script=label)
    # Create a console script line for setup.
    target = "{}:{}".format(fn.__module__, fn.__qualname__)
    ENTRYPOINTS.append("{}={}".format(label, target))
    return wrap


def get_int(opts: DocOptArgs, name: str) -> int:
    """
    Read an integer option, as docopt only produces strings.
    """
    value = opts[name]
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError("{} must be a whole number, got {!r}".format(name, value))


def error(msg: Optional[str] = None, *, exit: Optional[int] = None, colour: Optional[str] = None):
    """
    Print an error message and/or exit.
    """
    if msg:
        colour = colour or ("1" if exit else "3")
        print("\033[9{}m{}\033[0m".format(colour, msg), file=sys.stderr)
    if exit is not None:
        sys.exit(exit)
