# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Allow-only access control list keyed by client identity.

Entry names and outlet ids are regular expressions with search semantics,
so "client1" also matches "client10"; anchor them ("^client1$") for exact
matches. Operation names are kebab-case: status, status-outlet-all,
status-outlet, temperature, who-am-i, clear-maximum-currents,
switch-outlet, lock-outlet, reboot-outlet. Outlet rules may list the
short form ("switch" grants "switch-outlet").

Example (JSON):
    [
      {"name": "^client1$", "outlets": [{"id": ".*", "operations": ["switch"]}]},
      {"name": "^client2$", "operations": ["status"]}
    ]
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

OUTLET_SUFFIX = "-outlet"


def _compile(kind: str, expr: str) -> re.Pattern:
    try:
        return re.compile(expr)
    except re.error as e:
        raise ValueError(f"Invalid {kind} expression {expr!r}: {e}")


@dataclass
class OutletRule:
    id: str
    operations: list[str] = field(default_factory=list)
    _pattern: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        self._pattern = _compile("outlet id", self.id)

    def grants(self, operation: str, outlet_id: str) -> bool:
        if not self._pattern.search(outlet_id):
            return False
        return any(op == operation or op + OUTLET_SUFFIX == operation
                   for op in self.operations)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "operations": list(self.operations)}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "OutletRule":
        return cls(id=str(d["id"]), operations=[str(op) for op in d.get("operations", [])])


@dataclass
class AccessControlEntry:
    name: str
    operations: list[str] = field(default_factory=list)
    outlets: list[OutletRule] = field(default_factory=list)
    _pattern: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        self._pattern = _compile("name", self.name)

    def matches(self, identity: str) -> bool:
        return self._pattern.search(identity) is not None

    def grants(self, operation: str, outlet_id: str | None = None) -> bool:
        if operation in self.operations:
            return True
        if outlet_id is None:
            return False
        return any(rule.grants(operation, outlet_id) for rule in self.outlets)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "operations": list(self.operations),
            "outlets": [r.to_dict() for r in self.outlets],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "AccessControlEntry":
        if "name" not in d:
            raise ValueError("ACL entry is missing 'name'")
        return cls(
            name=str(d["name"]),
            operations=[str(op) for op in d.get("operations", [])],
            outlets=[OutletRule.from_dict(o) for o in d.get("outlets", [])],
        )


class AccessControlList:
    """Ordered entries; any granting entry allows, no match denies."""

    def __init__(self, entries: list[AccessControlEntry] | None = None):
        self.entries = list(entries or [])

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def from_list(cls, data: list[dict[str, Any]]) -> "AccessControlList":
        if not isinstance(data, list):
            raise ValueError("ACL must be a list of entries")
        return cls([AccessControlEntry.from_dict(d) for d in data])

    def to_list(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.entries]

    def check(self, identity: str, operation: str, outlet_id: str | None = None) -> bool:
        for entry in self.entries:
            if entry.matches(identity) and entry.grants(operation, outlet_id):
                return True
        logger.debug("ACL: denied %s for %s (outlet %s)", operation, identity, outlet_id)
        return False
