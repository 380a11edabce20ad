"""Unit tests for per-case locking and optimistic version checks."""

import asyncio

import pytest

from workflow_service.core.errors import ConflictError
from workflow_service.core.locks import CaseLockRegistry
from workflow_service.infrastructure.persistence import CaseMutation
from workflow_service.models import Case, CommentRequest, TransitionPayload


@pytest.mark.unit
class TestCaseLocks:
    """Lock registry"""

    async def test_hold_serializes_same_case(self):
        locks = CaseLockRegistry()
        order = []

        async def worker(name):
            async with locks.hold("case_1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    async def test_hold_many_sorted_and_released(self):
        locks = CaseLockRegistry()
        async with locks.hold_many(["c", "a", "b", "a"]) as ordered:
            assert ordered == ["a", "b", "c"]
            assert locks.is_locked("b")
        assert not locks.is_locked("b")

    async def test_overlapping_batches_do_not_deadlock(self):
        locks = CaseLockRegistry()

        async def batch(ids):
            async with locks.hold_many(ids):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(asyncio.gather(batch(["x", "y"]), batch(["y", "x"])), timeout=1)

    async def test_released_locks_are_evicted(self):
        locks = CaseLockRegistry()
        async with locks.hold("case_1"):
            assert locks.tracked_count == 1
        async with locks.hold_many(["a", "b"]):
            assert locks.tracked_count == 2
        assert locks.tracked_count == 0

    async def test_entry_kept_while_a_waiter_remains(self):
        locks = CaseLockRegistry()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def first():
            async with locks.hold("case_1"):
                entered.set()
                await release.wait()

        async def second():
            await entered.wait()
            async with locks.hold("case_1"):
                assert locks.is_locked("case_1")

        tasks = [asyncio.create_task(first()), asyncio.create_task(second())]
        await entered.wait()
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(*tasks)
        assert locks.tracked_count == 0

    async def test_cancelled_waiter_is_evicted(self):
        locks = CaseLockRegistry()
        async with locks.hold("case_1"):
            waiter = asyncio.create_task(locks.hold("case_1").__aenter__())
            await asyncio.sleep(0)
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter
        assert locks.tracked_count == 0


@pytest.mark.unit
class TestOptimisticVersion:
    """A stale writer loses with ConflictError"""

    async def test_stale_version_rejected(self, case_repo, make_case):
        case = await make_case()
        stale = case.model_copy(deep=True)

        fresh = case.model_copy(deep=True)
        fresh.title = "fresh"
        await case_repo.commit([CaseMutation(case=fresh, expected_version=case.version)])

        stale.title = "stale"
        with pytest.raises(ConflictError):
            await case_repo.commit([CaseMutation(case=stale, expected_version=case.version)])
        assert (await case_repo.get(case.id)).title == "fresh"

    async def test_duplicate_insert_rejected(self, case_repo):
        case = Case(workflow_id="wf_incident", current_state_id="new")
        await case_repo.commit([CaseMutation(case=case)])
        with pytest.raises(ConflictError):
            await case_repo.commit([CaseMutation(case=case)])

    async def test_failed_batch_writes_nothing(self, case_repo, make_case):
        first, second = await make_case(), await make_case()
        changed = first.model_copy(deep=True)
        changed.title = "changed"

        with pytest.raises(ConflictError):
            await case_repo.commit([
                CaseMutation(case=changed, expected_version=first.version),
                CaseMutation(case=second, expected_version=second.version + 5),
            ])
        assert (await case_repo.get(first.id)).title == first.title

    async def test_reads_are_detached(self, case_repo, make_case):
        case = await make_case()
        loaded = await case_repo.get(case.id)
        loaded.current_state_id = "resolved"
        assert (await case_repo.get(case.id)).current_state_id == "new"


@pytest.mark.unit
class TestConcurrentOperations:
    """Concurrent engine calls on one case stay consistent"""

    async def test_parallel_transitions_one_wins(self, engine, make_case, actor, case_repo):
        case = await make_case()

        results = await asyncio.gather(
            engine.execute_transition(case.id, "assign", TransitionPayload(comment="a"), actor),
            engine.execute_transition(case.id, "close_duplicate", TransitionPayload(), actor),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        assert len(succeeded) == 1
        assert len(await case_repo.list_history(case.id)) == 1

    async def test_parallel_comments_get_distinct_numbers(self, case_manager, make_case, actor, case_repo):
        case = await make_case()

        await asyncio.gather(*(
            case_manager.add_comment(case.id, CommentRequest(content=f"note {n}"), actor)
            for n in range(5)
        ))

        revisions, total = await case_repo.list_revisions(case.id)
        assert total == 6
        assert [r.revision_number for r in revisions] == [1, 2, 3, 4, 5, 6]
        assert (await case_repo.get(case.id)).version == 6
