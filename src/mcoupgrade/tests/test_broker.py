import subprocess

import pytest

from mcoupgrade import broker as broker_mod
from mcoupgrade.broker import (
    Broker,
    BrokerError,
    DiagnosticLog,
    HostStatus,
    parse_status,
)
from mcoupgrade.config import BatchSpec
from mcoupgrade.packages import HostPattern

STATUS_OUTPUT = """\
katmai.sandesnet.net
          Arch: x86_64
        Ensure: 2.2.3-33.el5
          Name: httpd
      Provider: yum

denali.sandesnet.net
        Ensure: absent
          Name: httpd

Finished processing 2 / 2 hosts in 283.61 ms
"""


def test_parse_status():
    assert parse_status(STATUS_OUTPUT) == [
        HostStatus("katmai.sandesnet.net", "2.2.3-33.el5"),
        HostStatus("denali.sandesnet.net", "absent"),
    ]


def test_parse_status_ignores_other_fields():
    assert parse_status("host1\n   Ensured_by: x\n   Name: Ensure\n") == []
    assert parse_status("") == []


@pytest.fixture
def diag():
    with DiagnosticLog() as diag:
        yield diag


class TestDiagnosticLog:
    def test_read_lines_drops_discovery_lines(self, diag):
        diag.write("Determining the amount of hosts matching filter for 2 seconds .... 2\n")
        diag.write("error: no such service\n")
        assert diag.read_lines() == ["error: no such service"]
        diag.write("another\n")
        assert diag.read_lines() == ["error: no such service", "another"]

    def test_closed_on_exit(self):
        with DiagnosticLog() as diag:
            f = diag.file
        assert f.closed
        assert diag.file is None


class FakeRun:
    def __init__(self, stdout="", stderr="", returncode=0, exc=None):
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.exc = exc
        self.calls = []

    def __call__(self, command, **kwargs):
        self.calls.append((command, kwargs))
        if self.exc is not None:
            raise self.exc
        stdout = self.stdout if kwargs.get("stdout") == subprocess.PIPE else None
        if kwargs.get("capture_output"):
            stdout = self.stdout
        return subprocess.CompletedProcess(command, self.returncode, stdout, self.stderr)


@pytest.fixture
def fake_run(monkeypatch):
    def install(**kwargs):
        run = FakeRun(**kwargs)
        monkeypatch.setattr(broker_mod.subprocess, "run", run)
        return run

    return install


class TestBroker:
    def test_install_command(self, settings, diag, fake_run):
        run = fake_run(stderr="warning: slow host\n")
        broker = Broker(settings, diag, verbose=True)
        result = broker.package(HostPattern("katmai"), "install", "httpd-2.2.3-33")
        assert result.ok
        command, kwargs = run.calls[0]
        assert command == [
            "mco", "rpc", "--np", "-v", "-F", "hostname=katmai",
            "package", "install", "package=httpd-2.2.3-33",
        ]
        assert kwargs["stdout"] is None
        assert "/opt/puppet/bin" in kwargs["env"]["PATH"]
        assert diag.read_lines() == ["warning: slow host"]

    def test_quiet_service_command_with_batch(self, settings, diag, fake_run):
        run = fake_run(returncode=1)
        broker = Broker(settings, diag, quiet=True, batch=BatchSpec(3, 7))
        result = broker.service(HostPattern("a.b"), "stop", "httpd", quiet=True)
        assert not result.ok
        command, kwargs = run.calls[0]
        assert command == [
            "mco", "rpc", "--np", "-q", "--batch", "3", "--batch-sleep-time", "7",
            "-F", "fqdn=a.b", "service", "stop", "service=httpd",
        ]
        assert kwargs["stdout"] == subprocess.DEVNULL

    def test_zero_batch_agents_adds_no_options(self, settings, diag, fake_run):
        run = fake_run()
        broker = Broker(settings, diag, batch=BatchSpec(0, 1))
        broker.service(HostPattern("a"), "restart", "httpd")
        assert "--batch" not in run.calls[0][0]

    def test_package_status(self, settings, diag, fake_run):
        run = fake_run(stdout=STATUS_OUTPUT)
        broker = Broker(settings, diag, verbose=True, batch=BatchSpec(2, 1))
        statuses = broker.package_status(HostPattern("/sandesnet/"), "httpd")
        assert [s.ensure for s in statuses] == ["2.2.3-33.el5", "absent"]
        command, kwargs = run.calls[0]
        assert command == [
            "mco", "rpc", "--np", "-F", "hostname=/sandesnet/",
            "package", "status", "package=httpd",
        ]
        assert kwargs["stdout"] == subprocess.PIPE

    def test_missing_broker(self, settings, diag, fake_run):
        fake_run(exc=FileNotFoundError("mco"))
        broker = Broker(settings, diag)
        with pytest.raises(BrokerError) as excinfo:
            broker.package(HostPattern("a"), "install", "httpd")
        assert excinfo.value.exitcode == 2

    @pytest.mark.parametrize(
        "helptext,expected",
        [
            ("  -1, --one      Send request to only one discovered node\n"
             "      --batch SIZE   Do requests in batches\n", True),
            ("  -1, --one      Send request to only one discovered node\n", False),
        ],
    )
    def test_supports_batch(self, settings, fake_run, helptext, expected):
        run = fake_run(stdout=helptext)
        assert Broker(settings).supports_batch() is expected
        assert run.calls[0][0] == ["mco", "rpc", "--help"]

    def test_supports_batch_without_broker(self, settings, fake_run):
        fake_run(exc=FileNotFoundError("mco"))
        assert not Broker(settings).supports_batch()
