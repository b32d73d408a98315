"""
Invoking actions through the mcollective RPC broker (``mco rpc``).

Every call is synchronous: it returns once the broker has fanned the
action out to all hosts matching the filter. Broker stderr is appended
to a DiagnosticLog which is shown when a run fails.
"""

import logging
import subprocess
import tempfile
from dataclasses import dataclass

DETERMINING_PREFIX = "Determining the amount of hosts matching filter"


class UpgradeError(Exception):
    """A failure that ends the run with a non-zero exit code."""

    exitcode = 2


class BrokerError(UpgradeError):
    pass


@dataclass
class ActionResult:
    command: list
    returncode: int
    output: str = ""

    @property
    def ok(self):
        return self.returncode == 0


@dataclass(frozen=True)
class HostStatus:
    host: str
    ensure: str


def parse_status(text):
    """Return HostStatus pairs for all ``Ensure:`` fields in broker output.

    The broker prints each host name unindented, followed by its
    indented ``Field: value`` lines.
    """
    statuses = []
    host = ""
    for line in text.splitlines():
        if not line.strip():
            continue
        if not line[0].isspace():
            host = line.strip()
            continue
        key, sep, value = line.partition(":")
        if sep and key.strip() == "Ensure":
            statuses.append(HostStatus(host, "".join(value.split())))
    return statuses


class DiagnosticLog:
    """Temporary file collecting broker stderr for the duration of a run."""

    def __init__(self):
        self.file = None

    def __enter__(self):
        self.file = tempfile.TemporaryFile(mode="w+", prefix="mco-")
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        if self.file is not None:
            self.file.close()
            self.file = None

    def write(self, text):
        self.file.write(text)
        self.file.flush()

    def read_lines(self):
        self.file.flush()
        self.file.seek(0)
        lines = self.file.read().splitlines()
        self.file.seek(0, 2)
        return [line for line in lines if not line.startswith(DETERMINING_PREFIX)]


class Broker:
    def __init__(self, settings, diag=None, verbose=False, quiet=False, batch=None):
        self.settings = settings
        self.diag = diag
        self.verbose = verbose
        self.quiet = quiet
        self.batch = batch

    def _run(self, command, **kwargs):
        logging.info("$ %s", " ".join(command))
        try:
            return subprocess.run(
                command, env=self.settings.broker_env(), check=False, **kwargs
            )
        except OSError as ex:
            raise BrokerError(f"cannot execute {command[0]!r}: {ex}") from ex

    def supports_batch(self):
        """Ask ``mco rpc --help`` whether it accepts the --batch option."""
        command = [self.settings.mco_command, "rpc", "--help"]
        try:
            proc = self._run(command, capture_output=True, text=True)
        except BrokerError as ex:
            logging.warning("batch capability check failed: %s", ex)
            return False
        return " --batch " in proc.stdout

    def command(self, target, agent, action, params, flags=True):
        cmd = [self.settings.mco_command, "rpc", "--np"]
        if flags:
            if self.verbose:
                cmd.append("-v")
            elif self.quiet:
                cmd.append("-q")
            if self.batch is not None and self.batch.agents > 0:
                cmd.extend(["--batch", str(self.batch.agents)])
                cmd.extend(["--batch-sleep-time", str(self.batch.pause)])
        cmd.extend(["-F", target.filter, agent, action])
        cmd.extend(f"{key}={value}" for key, value in params.items())
        return cmd

    def rpc(self, target, agent, action, params, quiet=False, capture=False, flags=True):
        """Run one broker action against all hosts matching ``target``."""
        cmd = self.command(target, agent, action, params, flags=flags)
        if capture:
            stdout = subprocess.PIPE
        elif quiet:
            stdout = subprocess.DEVNULL
        else:
            stdout = None
        proc = self._run(cmd, stdout=stdout, stderr=subprocess.PIPE, text=True)
        if proc.stderr and self.diag is not None:
            self.diag.write(proc.stderr)
        return ActionResult(cmd, proc.returncode, proc.stdout if capture else "")

    def package(self, target, action, package, quiet=False):
        return self.rpc(target, "package", action, {"package": package}, quiet=quiet)

    def service(self, target, action, service, quiet=False):
        return self.rpc(target, "service", action, {"service": service}, quiet=quiet)

    def package_status(self, target, package):
        result = self.rpc(
            target, "package", "status", {"package": package}, capture=True, flags=False
        )
        return parse_status(result.output)
