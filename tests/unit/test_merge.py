"""Unit tests for merging and unmerging duplicate cases."""

import pytest

from workflow_service.core.errors import InvalidMergeError, TransitionNotFoundError
from workflow_service.models import (
    CaseCreateRequest,
    RecordType,
    RevisionActionType,
    TransitionPayload,
)

from factories import build_workflow


@pytest.fixture
async def trio(make_case):
    return [await make_case(title=f"Leak report {n}") for n in range(3)]


@pytest.mark.unit
class TestValidateMerge:
    """validate_merge never raises for invalid sets"""

    async def test_mixed_record_types(self, engine, workflow_repo, case_manager, make_case, actor):
        """Happy path: 3 cases of mixed record types cannot be merged"""
        any_type = await workflow_repo.save(build_workflow("wf_any", RecordType.ALL))
        incident = await make_case()
        complaint = await case_manager.create_case(
            CaseCreateRequest(record_type=RecordType.COMPLAINT, workflow_id=any_type.id), actor,
        )
        query = await case_manager.create_case(
            CaseCreateRequest(record_type=RecordType.QUERY, workflow_id=any_type.id), actor,
        )

        validation = await engine.validate_merge([incident.id, complaint.id, query.id])
        assert validation.can_merge is False
        assert validation.errors
        assert "different record types" in validation.errors[0]
        assert len(validation.master_options) == 3

    async def test_valid_set(self, engine, trio):
        validation = await engine.validate_merge([c.id for c in trio])
        assert validation.can_merge is True
        assert validation.errors == []
        assert [c.id for c in validation.master_options] == [c.id for c in trio]

    async def test_needs_two_distinct_cases(self, engine, trio):
        validation = await engine.validate_merge([trio[0].id, trio[0].id])
        assert validation.can_merge is False
        assert validation.errors == ["At least two distinct cases are required to merge"]

    async def test_unknown_case(self, engine, trio):
        validation = await engine.validate_merge([trio[0].id, "case_missing"])
        assert validation.can_merge is False
        assert "Cases not found: case_missing" in validation.errors

    async def test_already_merged_case(self, engine, trio, make_case, actor):
        await engine.merge([trio[0].id, trio[1].id], trio[0].id, actor)
        other = await make_case()

        validation = await engine.validate_merge([trio[1].id, other.id])
        assert validation.can_merge is False
        assert any("already merged" in e for e in validation.errors)

    async def test_two_existing_masters(self, engine, trio, make_case, actor):
        fourth = await make_case()
        await engine.merge([trio[0].id, trio[1].id], trio[0].id, actor)
        await engine.merge([trio[2].id, fourth.id], trio[2].id, actor)

        validation = await engine.validate_merge([trio[0].id, trio[2].id])
        assert validation.can_merge is False
        assert any("More than one case is already a master" in e for e in validation.errors)


@pytest.mark.unit
class TestMerge:
    """All-or-nothing merge into a master"""

    async def test_merge_links_duplicates(self, engine, trio, actor, case_repo):
        master, *duplicates = trio
        result = await engine.merge([c.id for c in trio], master.id, actor, comment="same leak")

        assert result.master_id == master.id
        assert sorted(c.id for c in result.merged) == sorted(c.id for c in duplicates)
        for duplicate in duplicates:
            stored = await engine.get_case(duplicate.id)
            assert stored.master_incident_id == master.id
            revisions, total = await case_repo.list_revisions(duplicate.id)
            assert total == 2
            assert revisions[-1].action_type == RevisionActionType.STATUS_CHANGED
            assert revisions[-1].action_description == f"Merged into {master.id}: same leak"

        stored_master = await engine.get_case(master.id)
        assert stored_master.master_incident_id is None
        assert stored_master.version == master.version

    async def test_master_must_be_in_set(self, engine, trio, make_case, actor):
        outsider = await make_case()
        with pytest.raises(InvalidMergeError):
            await engine.merge([trio[0].id, trio[1].id], outsider.id, actor)

    async def test_invalid_set_raises(self, engine, trio, actor):
        with pytest.raises(InvalidMergeError) as exc_info:
            await engine.merge([trio[0].id, "case_missing"], trio[0].id, actor)
        assert exc_info.value.to_dict()["errors"] == ["Cases not found: case_missing"]

    async def test_existing_master_stays_master(self, engine, trio, make_case, actor):
        await engine.merge([trio[0].id, trio[1].id], trio[0].id, actor)
        newcomer = await make_case()

        with pytest.raises(InvalidMergeError):
            await engine.merge([trio[0].id, newcomer.id], newcomer.id, actor)

        result = await engine.merge([trio[0].id, newcomer.id], trio[0].id, actor)
        assert [c.id for c in result.merged] == [newcomer.id]

    async def test_merge_with_transition(self, engine, trio, actor, case_repo):
        master, *duplicates = trio
        result = await engine.merge(
            [c.id for c in trio], master.id, actor, comment="dup", transition_code="CLOSE_DUP",
        )

        for merged in result.merged:
            assert merged.current_state_id == "resolved"
            assert merged.master_incident_id == master.id
            history = await case_repo.list_history(merged.id)
            assert len(history) == 1
            assert history[0].comment == "dup"
            revisions, total = await case_repo.list_revisions(merged.id)
            assert total == 2
            fields = [c.field for c in revisions[-1].changes]
            assert fields[:2] == ["master_incident_id", "current_state_id"]
            assert revisions[-1].transition_history_id == history[0].id

        assert (await engine.get_case(master.id)).current_state_id == "new"

    async def test_transition_failure_merges_nothing(self, engine, trio, actor):
        master, first, second = trio
        await engine.execute_transition(second.id, "assign", TransitionPayload(comment="x"), actor)

        with pytest.raises(TransitionNotFoundError):
            await engine.merge(
                [master.id, first.id, second.id], master.id, actor, transition_code="CLOSE_DUP",
            )

        for case in trio:
            assert (await engine.get_case(case.id)).master_incident_id is None
        assert (await engine.get_case(first.id)).current_state_id == "new"


@pytest.mark.unit
class TestUnmerge:
    """bulk_unmerge collects per-case failures"""

    async def test_merge_unmerge_round_trip(self, engine, trio, actor):
        master, *duplicates = trio
        await engine.merge([c.id for c in trio], master.id, actor)

        result = await engine.bulk_unmerge([c.id for c in duplicates], actor, comment="not the same")
        assert result.unmerged_count == 2
        assert result.failures == []
        for case in trio:
            assert (await engine.get_case(case.id)).master_incident_id is None

    async def test_failures_are_collected(self, engine, trio, actor):
        master, merged, untouched = trio
        await engine.merge([master.id, merged.id], master.id, actor)

        result = await engine.bulk_unmerge([untouched.id, "case_missing", merged.id], actor)
        assert result.unmerged_count == 1
        assert [f.case_id for f in result.failures] == [untouched.id, "case_missing"]
        assert "not merged" in result.failures[0].error
        assert (await engine.get_case(merged.id)).master_incident_id is None

    async def test_unmerge_revision(self, engine, trio, actor, case_repo):
        master, duplicate, _ = trio
        await engine.merge([master.id, duplicate.id], master.id, actor)
        await engine.bulk_unmerge([duplicate.id], actor)

        revisions, _ = await case_repo.list_revisions(duplicate.id)
        assert [r.revision_number for r in revisions] == [1, 2, 3]
        assert revisions[-1].action_description == f"Unmerged from {master.id}"
        assert revisions[-1].changes[0].old_value == master.id
        assert revisions[-1].changes[0].new_value is None
