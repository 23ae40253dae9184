"""Tests for the local behaviour of sfrest.record.Record."""

import json
from unittest.mock import MagicMock

import pytest

from sfrest.exceptions import PreconditionError
from sfrest.record import SERVER_MANAGED_FIELDS, Record, RecordAttributes


class TestAttributes:
    def test_no_attributes(self):
        rec = Record()

        assert rec.attributes is None
        assert rec.type_name == ""
        assert rec.id == ""

    def test_set_type(self):
        rec = Record().set_type("Case")

        assert rec.attributes == RecordAttributes(type="Case", url="")
        assert rec.type_name == "Case"

        rec.set_type("CaseComment")
        assert rec.type_name == "CaseComment"

    def test_set_type_keeps_url(self):
        rec = Record.from_wire({"attributes": {"type": "Case", "url": "/services/data/v60.0/sobjects/Case/500X"}})

        rec.set_type("Case")

        assert rec.attributes.url == "/services/data/v60.0/sobjects/Case/500X"

    @pytest.mark.parametrize(
        "attributes",
        ["Case", ["Case"], {"type": 42}, {"type": "Case", "url": 7}, None],
    )
    def test_malformed_attributes_read_as_absent(self, attributes):
        rec = Record(data={"attributes": attributes})

        assert rec.attributes is None
        assert rec.type_name == ""

    def test_partial_attributes(self):
        rec = Record(data={"attributes": {"type": "Account"}})

        assert rec.type_name == "Account"
        assert rec.attributes.url == ""


class TestFieldAccess:
    def test_field_is_raw(self):
        rec = Record(data={"NumberOfEmployees": 12, "Name": "Acme"})

        assert rec.field("NumberOfEmployees") == 12
        assert rec.field("Missing") is None

    def test_string_field_masks_type_mismatch(self):
        rec = Record(data={"Name": "Acme", "NumberOfEmployees": 12, "IsActive": True, "Owner": {"Name": "x"}})

        assert rec.string_field("Name") == "Acme"
        assert rec.string_field("NumberOfEmployees") == ""
        assert rec.string_field("IsActive") == ""
        assert rec.string_field("Owner") == ""
        assert rec.string_field("Missing") == ""

    def test_set_is_fluent(self):
        rec = Record("Case")

        out = rec.set("Subject", "Hello").set("Priority", "High").set_id("500X")

        assert out is rec
        assert rec["Subject"] == "Hello"
        assert rec["Priority"] == "High"
        assert rec.id == "500X"

    def test_dict_style_access(self):
        rec = Record("Case")
        rec["Subject"] = "Hi"

        assert "Subject" in rec
        assert set(rec) == {"attributes", "Subject"}
        assert len(rec) == 2

        del rec["Subject"]
        assert "Subject" not in rec

    def test_id_only_accepts_strings(self):
        assert Record(data={"Id": 123}).id == ""


class TestEquality:
    def test_session_not_part_of_equality(self):
        a = Record("Case", session=MagicMock()).set("Subject", "x")
        b = Record("Case", session=MagicMock()).set("Subject", "x")

        assert a == b
        assert a.session is not b.session

    def test_equal_to_plain_mapping(self):
        rec = Record(data={"A": 1})

        assert rec == {"A": 1}
        assert rec != {"A": 2}

    def test_session_not_serialized(self):
        rec = Record("Case", session=MagicMock()).set("Subject", "x")

        data = json.loads(json.dumps(rec.to_dict()))

        assert data == {"attributes": {"type": "Case", "url": ""}, "Subject": "x"}


class TestWireCopy:
    def test_round_trip_plain_fields(self):
        rec = Record("Account", session=MagicMock()).set_id("001X").set("A", 1).set("B", "x")

        assert rec.to_wire() == {"A": 1, "B": "x"}

    def test_wire_copy_is_detached(self):
        rec = Record("Account").set("A", 1)

        wire = rec.to_wire()
        wire["A"] = 2

        assert rec["A"] == 1

    def test_server_managed_fields_removed(self):
        rec = Record("Case").set("Subject", "x")
        for name in SERVER_MANAGED_FIELDS:
            rec.set(name, "ignored")

        assert rec.to_wire() == {"Subject": "x"}

    def test_deny_lists_are_unioned(self):
        rec = Record("Case").set("Subject", "x").set("CreatedDate", "2020-01-01").set("Custom__c", "y")

        wire = rec.to_wire(exclude=["Custom__c"])

        assert wire == {"Subject": "x"}

    def test_exclude_cannot_readd_fixed_fields(self):
        rec = Record("Case").set("IsDeleted", False)

        assert "IsDeleted" not in rec.to_wire(exclude=[])


class TestRelatedRecord:
    def test_scalar_id_gives_stub(self):
        session = MagicMock()
        rec = Record("CaseComment", session=session).set("ParentId", "500X")

        parent = rec.related_record("Case", "ParentId")

        assert parent.type_name == "Case"
        assert parent.id == "500X"
        assert set(parent) == {"attributes", "Id"}
        assert parent.session is session

    def test_missing_field(self):
        rec = Record("Case").set("ParentId", "500X")

        assert rec.related_record("User", "OwnerId") is None

    @pytest.mark.parametrize("value", ["", 42, None, ["005X"], {"Name": "no attributes"}])
    def test_unusable_values(self, value):
        rec = Record("Case").set("OwnerId", value)

        assert rec.related_record("User", "OwnerId") is None

    def test_expanded_relationship(self):
        session = MagicMock()
        rec = Record.from_wire(
            {
                "attributes": {"type": "Contact", "url": "/services/data/v60.0/sobjects/Contact/003X"},
                "Id": "003X",
                "Account": {
                    "attributes": {"type": "Account", "url": "/services/data/v60.0/sobjects/Account/001X"},
                    "Name": "Acme",
                },
            },
            session,
        )

        account = rec.related_record("Account", "Account")

        assert account.type_name == "Account"
        assert account.id == "001X"
        assert account.string_field("Name") == "Acme"
        assert account.session is session
        # The nested dict inside the parent is not modified.
        assert "Id" not in rec["Account"]

    def test_expanded_relationship_without_url(self):
        rec = Record("Contact").set("Account", {"attributes": {"type": "Account"}, "Name": "Acme"})

        assert rec.related_record("Account", "Account") is None


class TestPreconditions:
    """Local failures never reach the transport."""

    def _session(self):
        session = MagicMock()
        session.request.side_effect = AssertionError("network must not be used")
        session.call_json.side_effect = AssertionError("network must not be used")
        return session

    @pytest.mark.parametrize("op", ["describe", "fetch", "create", "update", "delete"])
    def test_untyped_record(self, op):
        session = self._session()
        rec = Record(session=session).set_id("001X")

        with pytest.raises(PreconditionError):
            getattr(rec, op)()

        session.sobject_url.assert_not_called()

    def test_untyped_upsert(self):
        session = self._session()

        with pytest.raises(PreconditionError):
            Record(session=session).upsert("Ext__c", "42")

        session.sobject_url.assert_not_called()

    @pytest.mark.parametrize("op", ["describe", "fetch", "create", "update", "delete"])
    def test_unbound_record(self, op):
        rec = Record("Case").set_id("500X")

        with pytest.raises(PreconditionError, match="not bound"):
            getattr(rec, op)()

    @pytest.mark.parametrize("op", ["fetch", "update", "delete"])
    def test_missing_id(self, op):
        session = self._session()

        with pytest.raises(PreconditionError, match="no Id"):
            getattr(Record("Case", session=session), op)()

        session.sobject_url.assert_not_called()

    def test_upsert_needs_external_id(self):
        session = self._session()

        with pytest.raises(PreconditionError):
            Record("Case", session=session).upsert("Ext__c", "")


class TestNestedRecords:
    def test_nested_record_value(self):
        session = MagicMock()
        account = Record.from_wire(
            {
                "attributes": {"type": "Account", "url": "/services/data/v60.0/sobjects/Account/001X"},
                "Name": "Acme",
            }
        )
        rec = Record("Contact", session=session).set("Account", account)

        related = rec.related_record("Account", "Account")

        assert related.type_name == "Account"
        assert related.id == "001X"
        assert related.string_field("Name") == "Acme"
        assert related.session is session
        assert related is not account
        assert "Id" not in account

    def test_nested_record_attributes(self):
        inner = Record("Account")

        assert RecordAttributes.from_value(inner) == RecordAttributes(type="Account", url="")
        assert Record(data={"attributes": inner}).type_name == "Account"
