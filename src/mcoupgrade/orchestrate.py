"""
Sequencing of a run over all (host pattern, package) pairs:

    pause services -> [uninstall -> poll] -> install -> poll
        -> verify version -> resume services -> refresh services

The first failing install, uninstall or version check ends the run.
Service actions are best effort, their failures are only logged.
"""

import logging
import time

from .broker import UpgradeError
from .packages import HostPattern
from .poll import ensure_values, install_converged, poll_until, uninstall_converged


class ConvergenceError(UpgradeError):
    def __init__(self, message, versions=()):
        super().__init__(message)
        self.versions = list(versions)


class VerifyError(UpgradeError):
    def __init__(self, message, requested, installed):
        super().__init__(message)
        self.requested = requested
        self.installed = installed


class Orchestrator:
    def __init__(self, config, broker, out, settings, sleep=time.sleep):
        self.config = config
        self.broker = broker
        self.out = out
        self.settings = settings
        self.sleep = sleep

    def say(self, msg):
        if not self.config.quiet:
            self.out(msg)

    def run(self):
        for host in self.config.hosts:
            target = HostPattern(host)
            self.say(f"\n=== {target} ===")
            for package in self.config.packages:
                if self.config.status:
                    self.show_status(target, package)
                else:
                    self.upgrade(target, package)

    def show_status(self, target, package):
        self.broker.rpc(target, "package", "status", {"package": package.full})

    def upgrade(self, target, package):
        config = self.config
        if config.pause:
            self.services(target, "stop", config.pause, "Stopping")
            self.sleep(self.settings.pause_delay)
        if config.downgrade:
            self.uninstall(target, package)
        installed = self.install(target, package)
        if config.should_verify(package):
            self.verify(package, installed.statuses)
        if not config.quiet:
            self.out.green(f"=== Package {package.full} install successful ===")
        if config.pause:
            self.services(target, "start", config.pause, "Starting")
        if config.refresh:
            self.services(target, "restart", config.refresh, "Refreshing")

    def services(self, target, action, names, verb):
        for name in names:
            self.say(f"...{verb} service {name}")
            result = self.broker.service(target, action, name, quiet=self.config.quiet)
            if not result.ok:
                logging.warning(
                    "service %s %s on %s exited with %d",
                    action, name, target, result.returncode,
                )

    def poll(self, target, package, predicate):
        return poll_until(
            lambda: self.broker.package_status(target, package.name),
            predicate,
            timeout=self.config.verify_timeout,
            interval=self.settings.poll_interval,
            sleep=self.sleep,
        )

    def uninstall(self, target, package):
        self.say(f"...Uninstalling package {package.name} before downgrade")
        self.broker.package(target, "uninstall", package.name, quiet=self.config.quiet)
        self.sleep(self.settings.settle_delay)
        self.say(f"...Verifying that the {package.name} package has been uninstalled")
        if not self.poll(target, package, uninstall_converged):
            raise ConvergenceError(
                f"*** Downgraded package uninstall failed - {package.name} ***"
            )

    def install(self, target, package):
        self.say(f"...Installing package {package.full}")
        self.broker.package(target, "install", package.full, quiet=self.config.quiet)
        self.sleep(self.settings.settle_delay)
        self.say(f"...Verifying package {package.full} install")
        result = self.poll(target, package, install_converged)
        if not result:
            raise ConvergenceError(
                f"*** Package verification failed - {package.full} ***",
                versions=ensure_values(result.statuses),
            )
        return result

    def verify(self, package, statuses):
        self.say(
            f"...Verifying that the installed package {package.name} "
            f"has version {package.version}"
        )
        installed = "".join(ensure_values(statuses))
        if installed != package.version:
            raise VerifyError(
                f"*** Package verification failed - {package.full} ***\n"
                f"Installed version {installed} different from requested "
                f"version {package.version}",
                requested=package.version,
                installed=installed,
            )
