"""
Polling the broker's package status until the fleet converges.
"""

import time
from dataclasses import dataclass, field

ABSENT = "absent"


def ensure_values(statuses):
    """Return the sorted distinct Ensure values of the statuses."""
    return sorted({status.ensure for status in statuses})


def uninstall_converged(statuses) -> bool:
    """True if no host still reports the package as present."""
    return all(status.ensure == ABSENT for status in statuses)


def install_converged(statuses) -> bool:
    """True if all hosts report one and the same Ensure value."""
    return len(ensure_values(statuses)) == 1


@dataclass
class Convergence:
    converged: bool
    statuses: list = field(default_factory=list)
    sleeps: int = 0

    def __bool__(self):
        return self.converged


def poll_until(query, predicate, timeout, interval=5, sleep=time.sleep):
    """Call ``query`` until ``predicate`` holds for its result.

    Between queries sleep ``interval`` seconds. Once less than one
    interval of ``timeout`` remains, stop and check a final time.
    """
    if interval <= 0:
        raise ValueError(f"poll interval must be positive, got {interval}")
    remaining = timeout
    sleeps = 0
    statuses = query()
    while not predicate(statuses):
        sleep(interval)
        sleeps += 1
        remaining -= interval
        if remaining < interval:
            statuses = query()
            return Convergence(predicate(statuses), statuses, sleeps)
        statuses = query()
    return Convergence(True, statuses, sleeps)
