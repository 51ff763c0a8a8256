"""Tests for fix validation and application against business records."""

import pytest
from sqlmodel import Session, select

from dq_audit.engines.audit.errors import FixValidationError
from dq_audit.engines.audit.fix_applier import (
    MAX_FIELD_LENGTH,
    apply_fix,
    snapshot_entity,
    validate_fix,
)
from dq_audit.models.records import Candidate, Company
from dq_audit.models.remediation import LinkCompanyFix, MergeDuplicateFix, UpdateFieldsFix


class TestValidateFix:

    def test_valid_update(self, seeded_db):
        with Session(seeded_db) as session:
            fix = UpdateFieldsFix(updates={"email": "a@example.com"})
            assert validate_fix(session, "candidate", 1, fix) is None

    def test_missing_record(self, seeded_db):
        with Session(seeded_db) as session:
            fix = UpdateFieldsFix(updates={"email": "a@example.com"})
            assert "does not exist" in validate_fix(session, "candidate", 999, fix)

    def test_non_editable_field(self, seeded_db):
        with Session(seeded_db) as session:
            fix = UpdateFieldsFix(updates={"current_company_id": "2"})
            assert "not editable" in validate_fix(session, "candidate", 1, fix)

    def test_blank_value(self, seeded_db):
        with Session(seeded_db) as session:
            fix = UpdateFieldsFix(updates={"email": "   "})
            assert "blank" in validate_fix(session, "candidate", 1, fix)

    def test_too_long_value(self, seeded_db):
        with Session(seeded_db) as session:
            fix = UpdateFieldsFix(updates={"email": "x" * (MAX_FIELD_LENGTH + 1)})
            assert "exceeds" in validate_fix(session, "candidate", 1, fix)

    def test_empty_update(self, seeded_db):
        with Session(seeded_db) as session:
            assert validate_fix(session, "candidate", 1, UpdateFieldsFix()) is not None

    def test_kind_target_mismatch(self, seeded_db):
        with Session(seeded_db) as session:
            assert validate_fix(session, "company", 1, LinkCompanyFix(company_id=2)) is not None
            assert validate_fix(session, "candidate", 1, MergeDuplicateFix(duplicate_of_id=2)) is not None

    def test_link_requires_existing_or_creatable_company(self, seeded_db):
        with Session(seeded_db) as session:
            assert validate_fix(session, "candidate", 1, LinkCompanyFix(company_id=2)) is None
            assert validate_fix(session, "candidate", 1, LinkCompanyFix(company_id=99)) is not None
            assert validate_fix(session, "candidate", 1, LinkCompanyFix(company_name="Newco")) is not None
            assert validate_fix(
                session, "candidate", 1, LinkCompanyFix(company_name=" ", create_if_missing=True)
            ) is not None

    def test_merge_into_self_rejected(self, seeded_db):
        with Session(seeded_db) as session:
            assert "itself" in validate_fix(session, "company", 1, MergeDuplicateFix(duplicate_of_id=1))


class TestApplyFix:

    def test_update_fields_records_before_after(self, seeded_db):
        with Session(seeded_db) as session:
            change = apply_fix(session, "candidate", 1, UpdateFieldsFix(updates={"email": " a@example.com "}))
            session.commit()
        assert change.before["email"] is None
        assert change.after["email"] == "a@example.com"
        assert change.kind == "update_fields"
        with Session(seeded_db) as session:
            assert session.get(Candidate, 1).email == "a@example.com"

    def test_link_existing_company_by_name(self, seeded_db):
        with Session(seeded_db) as session:
            change = apply_fix(session, "candidate", 2, LinkCompanyFix(company_name="globex ", create_if_missing=True))
            session.commit()
        assert change.after["current_company_id"] == 2
        assert change.created_entities == []

    def test_link_creates_missing_company(self, seeded_db):
        with Session(seeded_db) as session:
            change = apply_fix(session, "candidate", 3, LinkCompanyFix(company_name="Newco", create_if_missing=True))
            session.commit()
        assert len(change.created_entities) == 1
        new_id = change.created_entities[0]["id"]
        with Session(seeded_db) as session:
            assert session.get(Company, new_id).name == "Newco"
            assert session.get(Candidate, 3).current_company_id == new_id

    def test_merge_duplicate_sets_parent(self, seeded_db):
        with Session(seeded_db) as session:
            apply_fix(session, "company", 2, MergeDuplicateFix(duplicate_of_id=1))
            session.commit()
        with Session(seeded_db) as session:
            assert session.get(Company, 2).parent_company_id == 1

    def test_invalid_fix_raises_and_changes_nothing(self, seeded_db):
        with Session(seeded_db) as session:
            with pytest.raises(FixValidationError):
                apply_fix(session, "candidate", 1, UpdateFieldsFix(updates={"email": ""}))
            session.rollback()
        with Session(seeded_db) as session:
            assert session.get(Candidate, 1).email is None
            assert len(session.exec(select(Company)).all()) == 2

    def test_snapshot_unknown_entity_is_empty(self, seeded_db):
        with Session(seeded_db) as session:
            assert snapshot_entity(session, "candidate", 999) == {}
            assert snapshot_entity(session, "job", 1) == {}
            snap = snapshot_entity(session, "candidate", 1)
        assert snap["first_name"] == "First1"
        assert "created_at" not in snap
