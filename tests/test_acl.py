# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Tests for the identity-keyed access control list."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "bridge"))

from pductl.acl import AccessControlEntry, AccessControlList, OutletRule

EXAMPLE = [
    {"name": "^client1$", "outlets": [{"id": ".*", "operations": ["switch"]}]},
    {"name": "^client2$", "operations": ["status"]},
]


@pytest.fixture
def acl():
    return AccessControlList.from_list(EXAMPLE)


class TestCheck:
    def test_outlet_grant(self, acl):
        assert acl.check("client1", "switch-outlet", "3") is True

    def test_unlisted_outlet_operation_denied(self, acl):
        assert acl.check("client1", "reboot-outlet", "3") is False

    def test_other_client_denied_outlet_operation(self, acl):
        assert acl.check("client2", "switch-outlet", "3") is False

    def test_outlet_grant_needs_outlet(self, acl):
        assert acl.check("client1", "switch-outlet") is False

    def test_outlet_rule_does_not_grant_status(self, acl):
        assert acl.check("client1", "status") is False

    def test_whole_pdu_grant(self, acl):
        assert acl.check("client2", "status") is True

    def test_operation_not_listed(self, acl):
        assert acl.check("client2", "switch-outlet", "3") is False

    def test_unknown_identity(self, acl):
        assert acl.check("client3", "status") is False

    def test_empty_list_denies(self):
        assert AccessControlList().check("anyone", "status") is False

    def test_any_granting_entry_wins(self):
        acl = AccessControlList.from_list([
            {"name": "ops", "operations": ["status"]},
            {"name": "ops-lead", "operations": ["clear-maximum-currents"]},
        ])
        assert acl.check("ops-lead", "clear-maximum-currents") is True
        assert acl.check("ops-lead", "status") is True
        assert acl.check("ops-1", "clear-maximum-currents") is False


class TestPatterns:
    def test_unanchored_name_is_search(self):
        acl = AccessControlList.from_list([{"name": "client1", "operations": ["status"]}])
        assert acl.check("client1", "status")
        assert acl.check("client10", "status")
        assert acl.check("lab-client1.example.com", "status")

    def test_anchored_name_is_exact(self, acl):
        assert acl.check("client10", "status") is False

    def test_outlet_id_pattern(self):
        acl = AccessControlList.from_list([{
            "name": "^rack$",
            "outlets": [{"id": "^(1|2|3)$", "operations": ["reboot", "lock-outlet"]}],
        }])
        assert acl.check("rack", "reboot-outlet", "2")
        assert acl.check("rack", "lock-outlet", "3")
        assert not acl.check("rack", "reboot-outlet", "12")
        assert not acl.check("rack", "switch-outlet", "1")

    @pytest.mark.parametrize("entry", [
        {"name": "([", "operations": ["status"]},
        {"name": "ok", "outlets": [{"id": "*1", "operations": ["switch"]}]},
    ])
    def test_bad_expression_rejected(self, entry):
        with pytest.raises(ValueError, match="Invalid"):
            AccessControlList.from_list([entry])


class TestSerialization:
    def test_round_trip_preserves_entries(self, acl):
        again = AccessControlList.from_list(acl.to_list())
        assert again.to_list() == acl.to_list()
        assert len(again) == 2

    def test_defaults_for_missing_lists(self):
        entry = AccessControlEntry.from_dict({"name": "x"})
        assert entry.operations == []
        assert entry.outlets == []

    def test_missing_name(self):
        with pytest.raises(ValueError, match="name"):
            AccessControlEntry.from_dict({"operations": ["status"]})

    def test_not_a_list(self):
        with pytest.raises(ValueError):
            AccessControlList.from_list({"name": "x"})

    def test_outlet_rule_fields(self):
        rule = OutletRule.from_dict({"id": 5, "operations": ["switch"]})
        assert rule.id == "5"
        assert rule.to_dict() == {"id": "5", "operations": ["switch"]}
