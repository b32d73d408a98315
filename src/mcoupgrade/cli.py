"""
Provides the `mco-package-upgrade` entry point function:
install, upgrade, downgrade or query packages on hosts selected
through mcollective.
"""

import getpass
import logging
import sys

from termcolor import colored

from .broker import Broker, DiagnosticLog, UpgradeError
from .config import UsageError, parse_run_config, read_settings, usage_text
from .orchestrate import ConvergenceError, Orchestrator

PROG = "mco-package-upgrade"


class Out:
    """Convenience output printer providing coloring."""

    def red(self, msg, file=None):
        print(colored(msg, "red"), file=file or sys.stderr)

    def green(self, msg, file=None):
        print(colored(msg, "green"), file=file)

    def __call__(self, msg, file=None):
        print(colored(msg), file=file)


def check_identity(settings, identity, out):
    """Return True if running as the user allowed to talk to the broker."""
    user = identity()
    if user != settings.mco_user:
        out.red(f"{PROG} must be run as user {settings.mco_user}")
        return False
    return True


def init_logging(config):
    if config.verbose:
        level = logging.INFO
    elif config.quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s", force=True)


def report_failure(ex, diag, out):
    out.red(str(ex))
    if isinstance(ex, ConvergenceError) and ex.versions:
        out("Installed versions:")
        for version in ex.versions:
            out(version)
    for line in diag.read_lines():
        out(line, file=sys.stderr)


def run(config, settings, out, broker=None, sleep=None):
    """Run all actions of ``config`` and return the exit code."""
    with DiagnosticLog() as diag:
        if broker is None:
            broker = Broker(
                settings,
                diag,
                verbose=config.verbose,
                quiet=config.quiet,
                batch=config.batch,
            )
        else:
            broker.diag = diag
        kwargs = {} if sleep is None else dict(sleep=sleep)
        orchestrator = Orchestrator(config, broker, out, settings, **kwargs)
        try:
            orchestrator.run()
        except UpgradeError as ex:
            report_failure(ex, diag, out)
            return ex.exitcode
    return 0


def main(args=None, identity=None, broker=None, sleep=None):
    """Provide main entry point for 'mco-package-upgrade' CLI invocation."""
    if args is None:
        args = sys.argv[1:]
    if identity is None:
        identity = getpass.getuser

    out = Out()
    try:
        settings = read_settings()
    except Exception as ex:
        out.red(f"invalid settings: {ex}")
        return 1
    if not check_identity(settings, identity, out):
        return 1

    checker = broker if broker is not None else Broker(settings)
    batch_supported = checker.supports_batch()

    res = parse_run_config(args, batch_supported=batch_supported)
    if isinstance(res, UsageError):
        headline = res.headline(PROG)
        if headline:
            out(f"{headline} ({res.message})")
        out(usage_text(PROG, batch_supported).rstrip("\n"))
        return res.exitcode

    init_logging(res)
    try:
        return run(res, settings, out, broker=broker, sleep=sleep)
    except KeyboardInterrupt:
        out.red("KeyboardInterrupt")
        return 130


if __name__ == "__main__":
    sys.exit(main())
