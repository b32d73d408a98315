import pytest

from mcoupgrade.broker import ActionResult, HostStatus
from mcoupgrade.config import Settings, parse_run_config


class FakeBroker:
    """Records broker actions and answers package status queries
    from a list of scripted replies."""

    def __init__(self, batch=True):
        self.calls = []
        self.status_replies = []
        self.failing = set()
        self.batch = batch
        self.diag = None

    def supports_batch(self):
        return self.batch

    def reply(self, *ensures, repeat=1):
        statuses = [HostStatus(f"host{i}", ensure) for i, ensure in enumerate(ensures)]
        for _ in range(repeat):
            self.status_replies.append(statuses)

    def rpc(self, target, agent, action, params, quiet=False, capture=False, flags=True):
        self.calls.append((str(target), agent, action, dict(params)))
        returncode = 1 if (agent, action) in self.failing else 0
        return ActionResult([agent, action], returncode)

    def package(self, target, action, package, quiet=False):
        return self.rpc(target, "package", action, {"package": package}, quiet=quiet)

    def service(self, target, action, service, quiet=False):
        return self.rpc(target, "service", action, {"service": service}, quiet=quiet)

    def package_status(self, target, package):
        self.calls.append((str(target), "package", "query", {"package": package}))
        if len(self.status_replies) > 1:
            return self.status_replies.pop(0)
        if self.status_replies:
            return self.status_replies[0]
        return []

    def actions(self, agent=None):
        return [c for c in self.calls if c[2] != "query" and agent in (None, c[1])]


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def settings():
    return Settings(params={"mco_user": "peadmin"})


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def make_config():
    def make(*args, batch_supported=True):
        config = parse_run_config(list(args), batch_supported=batch_supported)
        assert not isinstance(config, Exception), config
        return config

    return make


@pytest.fixture
def mockout():
    class MockOut:
        def __init__(self):
            self.captured_red = []
            self.captured_green = []
            self.captured_plain = []

        def red(self, msg, file=None):
            self.captured_red.append(msg)

        def green(self, msg, file=None):
            self.captured_green.append(msg)

        def __call__(self, msg, file=None):
            self.captured_plain.append(msg)

    return MockOut()
