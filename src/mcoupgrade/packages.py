"""
Host patterns and package specs as given on the command line.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class HostPattern:
    pattern: str

    @property
    def fact(self):
        """Broker fact the pattern is matched against."""
        return "fqdn" if "." in self.pattern else "hostname"

    @property
    def filter(self):
        return f"{self.fact}={self.pattern}"

    def __str__(self):
        return self.pattern


@dataclass(frozen=True)
class PackageSpec:
    name: str
    version: str = ""

    @classmethod
    def parse(cls, token):
        """Parse ``name[.version]``, the version being everything after the first dot."""
        name, _, version = token.partition(".")
        if not name:
            raise ValueError(f"invalid package spec {token!r}")
        return cls(name, version)

    @property
    def has_version(self):
        return bool(self.version)

    @property
    def full(self):
        return f"{self.name}-{self.version}" if self.version else self.name

    def __str__(self):
        return self.full
