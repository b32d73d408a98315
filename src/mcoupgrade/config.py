"""
Run configuration: tool settings from an optional ini file and
the validated command line of one invocation.
"""

import argparse
import os
import re
from dataclasses import dataclass
from pathlib import Path

import iniconfig

from .packages import PackageSpec

DEFAULT_INIPATH = Path("/etc/mco-package-upgrade.ini")

DEFAULT_SEARCH_PATH = "/opt/puppet/bin:/usr/local/bin:/bin:/usr/bin:/var/lib/peadmin/bin"


def _seconds(params, name, default):
    value = params.get(name, default)
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {value!r}") from None


class Settings:
    def __init__(self, params=None):
        params = params or {}
        self.mco_user = params.get("mco_user", "peadmin")
        self.mco_command = params.get("mco_command", "mco")
        self.search_path = params.get("search_path", DEFAULT_SEARCH_PATH).strip()
        self.poll_interval = _seconds(params, "poll_interval", 5)
        self.settle_delay = _seconds(params, "settle_delay", 5)
        self.pause_delay = _seconds(params, "pause_delay", 10)
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")

    def broker_env(self):
        env = os.environ.copy()
        path = env.get("PATH")
        env["PATH"] = f"{self.search_path}:{path}" if path else self.search_path
        return env


def read_settings(inipath=None):
    """Read tool settings, falling back to defaults if no ini file exists."""
    if inipath is None:
        inipath = Path(os.environ.get("MCO_UPGRADE_INI", DEFAULT_INIPATH))
    inipath = Path(inipath)
    if not inipath.exists():
        return Settings()
    cfg = iniconfig.IniConfig(inipath)
    params = cfg.sections["params"] if "params" in cfg else {}
    return Settings(params=params)


#
# command line of a single run
#


@dataclass(frozen=True)
class BatchSpec:
    agents: int = 0
    pause: int = 1


@dataclass(frozen=True)
class RunConfig:
    hosts: tuple
    packages: tuple
    pause: tuple = ()
    refresh: tuple = ()
    timeout: int = 2  # reserved, not enforced
    verify: bool = False
    verify_timeout: int = 120
    downgrade: bool = False
    verbose: bool = False
    quiet: bool = False
    status: bool = False
    batch: BatchSpec = None

    def should_verify(self, package):
        return self.verify and package.has_version


class UsageError(Exception):
    """Result of a command line that does not describe a run."""

    HELP = "help"
    INVALID = "invalid"
    MISSING = "missing"

    def __init__(self, kind, message=""):
        super().__init__(message or kind)
        self.kind = kind
        self.message = message

    @property
    def exitcode(self):
        return 0 if self.kind == self.HELP else 1

    def headline(self, prog):
        if self.kind == self.INVALID:
            return f"{prog}: Invalid or duplicate parameter"
        if self.kind == self.MISSING:
            return f"{prog}: Missing parameter"
        return ""


_TRUE = ("true", "t", "yes", "y")
_FALSE = ("false", "f", "no", "n")


def parse_bool(value):
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {value!r}")


def parse_seconds(value):
    if not re.fullmatch(r"[0-9]+", value):
        raise argparse.ArgumentTypeError(f"invalid number {value!r}")
    return int(value)


def parse_batch(value):
    match = re.fullmatch(r"([0-9]+)(?:,([0-9]+))?", value)
    if match is None:
        raise argparse.ArgumentTypeError(f"invalid batch spec {value!r}")
    agents, pause = match.groups()
    return BatchSpec(int(agents), int(pause) if pause is not None else 1)


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        raise UsageError(UsageError.INVALID, message)


class _Once(argparse.Action):
    """Store a value, rejecting a repeated option."""

    def __call__(self, parser, namespace, values, option_string=None):
        if getattr(namespace, self.dest) is not None:
            raise argparse.ArgumentError(self, "duplicate parameter")
        setattr(namespace, self.dest, values)


class _Switch(_Once):
    def __init__(self, option_strings, dest, **kwargs):
        super().__init__(option_strings, dest, nargs=0, **kwargs)

    def __call__(self, parser, namespace, values, option_string=None):
        super().__call__(parser, namespace, True, option_string)


class _CommaList(argparse.Action):
    """Accumulate comma separated values across repeated options."""

    def __call__(self, parser, namespace, values, option_string=None):
        items = list(getattr(namespace, self.dest) or [])
        items.extend(value for value in values.split(",") if value)
        setattr(namespace, self.dest, items)


def get_parser(batch_supported=False):
    parser = _Parser(add_help=False, allow_abbrev=False)
    parser.add_argument("--host", dest="hosts", action=_CommaList)
    parser.add_argument("--pause", action=_CommaList)
    parser.add_argument("--refresh", action=_CommaList)
    parser.add_argument("--timeout", action=_Once, type=parse_seconds)
    parser.add_argument("--verify", action=_Once, type=parse_bool)
    parser.add_argument("--verifytimeout", dest="verify_timeout", type=parse_seconds)
    parser.add_argument("--downgrade", action=_Switch)
    parser.add_argument("--verbose", action=_Switch)
    parser.add_argument("--quiet", action=_Switch)
    parser.add_argument("--status", action=_Switch)
    parser.add_argument("--help", action="store_true")
    if batch_supported:
        parser.add_argument("--batch", action=_Once, type=parse_batch)
    return parser


def split_args(args):
    """Split the command line into option tokens and package tokens."""
    for i, arg in enumerate(args):
        if not arg.startswith("-"):
            return list(args[:i]), list(args[i:])
    return list(args), []


def check_conflicts(ns):
    if ns.verbose and ns.quiet:
        return "--verbose and --quiet are mutually exclusive"
    if ns.status:
        for name in ("downgrade", "verify", "pause", "refresh"):
            if getattr(ns, name) is not None:
                return f"--status and --{name} are mutually exclusive"


def parse_run_config(args, batch_supported=False):
    """Return a RunConfig for the command line, or the UsageError describing
    why there is none."""
    options, tokens = split_args(args)
    if "--help" in options:
        # options after --help are not looked at
        options = options[: options.index("--help") + 1]
    try:
        ns = get_parser(batch_supported).parse_args(options)
    except UsageError as ex:
        return ex

    problem = check_conflicts(ns)
    if problem:
        return UsageError(UsageError.INVALID, problem)
    if ns.help:
        return UsageError(UsageError.HELP)

    for token in tokens:
        if token.startswith("-"):
            return UsageError(UsageError.INVALID, f"option {token!r} after packages")
    try:
        packages = tuple(PackageSpec.parse(token) for token in tokens)
    except ValueError as ex:
        return UsageError(UsageError.INVALID, str(ex))

    if not ns.hosts or not packages:
        return UsageError(UsageError.MISSING, "--host and a package are required")

    verify = ns.verify
    if verify is None:
        verify = any(package.has_version for package in packages)

    return RunConfig(
        hosts=tuple(ns.hosts),
        packages=packages,
        pause=tuple(ns.pause or ()),
        refresh=tuple(ns.refresh or ()),
        timeout=2 if ns.timeout is None else ns.timeout,
        verify=verify,
        verify_timeout=120 if ns.verify_timeout is None else ns.verify_timeout,
        downgrade=bool(ns.downgrade),
        verbose=bool(ns.verbose),
        quiet=bool(ns.quiet),
        status=bool(ns.status),
        batch=getattr(ns, "batch", None),
    )


USAGE = """\
Usage: {prog} [options] --host=hostpat[,hostpat[,...]] package[.version] [package[.version]]...

  Mandatory parameter:
    --host=hostpat[,hostpat[,...]]    - list of hostname patterns (host names, fqdns, wildcards and regexes)
                                        Selection of hosts where the packages have to be installed or upgraded
  Options:
    --pause=service[,service[,...]]   - services to be stopped before and started after the run
    --refresh=service[,service[,...]] - services to be refreshed/restarted after the run
{batch}\
    --timeout=seconds                 - runtime limit (reserved, not enforced)
                                        default: 2 seconds
    --verify=(true|yes|false|no)      - verify the version of packages after installation
                                        forced to false if no version is specified
                                        default: true if package versions are specified
                                                 false otherwise
    --verifytimeout=seconds           - version verification time limit
                                        default: 120 seconds
    --downgrade                       - enable downgrade of packages
    --verbose                         - verbose output
    --quiet                           - no output
    --status                          - display the package status on the selected hosts
    --help                            - display this usage screen and exit

Exit codes:
  0 - packages installed/upgraded on all selected hosts
  1 - incorrect or missing parameters
  2 - package install/upgrade or version verification failed

Examples:
  {prog} --host=katmai --status httpd
  {prog} --host=katmai.sandesnet.net --status httpd
  {prog} --host=/^katmai/ --pause=httpd --verify=true --downgrade --verbose httpd.2.2.3-33
  {prog} --host=/^katmai*/ --refresh=httpd --verify=true --downgrade --quiet httpd.2.2.3-33
"""

BATCH_USAGE = """\
    --batch=agents[,pause]            - agents - number of server agents running simultaneously
                                        default: 0 (agents run at the same time on all servers)
                                        pause  - number of seconds to pause after each batch
                                        default: 1 second
"""


def usage_text(prog, batch_supported=False):
    return USAGE.format(prog=prog, batch=BATCH_USAGE if batch_supported else "")
