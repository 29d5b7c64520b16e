"""Tests for wizard navigation, merging and session storage."""

import json

import pytest

from eta_service.middleware.exceptions import ResourceNotFoundError, SubmissionStateError
from eta_service.schemas.wizard import StepId
from eta_service.services.wizard_state import SubmissionPhase, WizardState


@pytest.mark.unit
class TestNavigation:

    def test_starts_on_first_step(self):
        state = WizardState()
        assert state.current_step == 0
        assert state.current_step_id == StepId.PASSPORT
        assert state.is_first_step
        assert not state.is_last_step

    def test_advance_stops_at_last_step(self):
        state = WizardState()
        for _ in range(20):
            state.advance()
        assert state.current_step == 7
        assert state.is_last_step
        assert state.current_step_id == StepId.REVIEW

    def test_retreat_stops_at_first_step(self):
        state = WizardState()
        state.retreat()
        assert state.current_step == 0

    @pytest.mark.parametrize("index", [-1, 8, 100])
    def test_jump_out_of_range_is_a_no_op(self, index):
        state = WizardState(current_step=3, highest_visited=3)
        state.jump_to(index)
        assert state.current_step == 3

    def test_jump_in_range(self):
        state = WizardState()
        state.jump_to(5)
        assert state.current_step == 5
        assert state.highest_visited == 5

    def test_current_step_stays_in_bounds(self):
        state = WizardState()
        for action in ("advance", "retreat", "advance", "advance", "retreat") * 5:
            getattr(state, action)()
            assert 0 <= state.current_step < state.total_steps


@pytest.mark.unit
class TestDraft:

    def test_merge_keeps_earlier_fields(self):
        state = WizardState()
        state.merge_step_data({"passport_number": "X1234567"})
        state.merge_step_data({"first_name": "Jane"})
        assert state.draft == {"passport_number": "X1234567", "first_name": "Jane"}

    def test_later_write_wins(self):
        state = WizardState()
        state.merge_step_data({"first_name": "Jane"})
        state.merge_step_data({"first_name": "Janet"})
        assert state.draft["first_name"] == "Janet"

    def test_mark_complete_is_idempotent(self):
        state = WizardState()
        state.mark_complete(2)
        state.mark_complete(2)
        assert state.completed_steps == {2}


@pytest.mark.unit
class TestUnlocking:

    def test_current_step_is_unlocked(self):
        state = WizardState(current_step=0)
        assert state.is_step_unlocked(0)
        assert not state.is_step_unlocked(1)

    def test_completed_step_is_unlocked(self):
        state = WizardState()
        state.mark_complete(4)
        assert state.is_step_unlocked(4)

    def test_steps_below_highest_visited_are_unlocked(self):
        state = WizardState()
        state.jump_to(4)
        state.jump_to(1)
        assert state.unlocked_steps() == [0, 1, 2, 3]
        # the highest step itself is neither current nor completed
        assert not state.is_step_unlocked(4)

    def test_saving_reaches_one_step_past_highest_visited(self):
        state = WizardState()
        assert state.can_save_step(0)
        assert state.can_save_step(1)
        assert not state.can_save_step(2)

        state.jump_to(3)
        state.jump_to(0)
        assert state.can_save_step(4)
        assert not state.can_save_step(5)


@pytest.mark.unit
class TestSerialization:

    def test_round_trip_through_dict(self):
        state = WizardState()
        state.merge_step_data({"email": "jane.doe@example.com"})
        state.mark_complete(0)
        state.advance()
        state.submission.payment_intent_id = "pi_1"
        state.submission.fail("card declined", SubmissionPhase.REVIEWING)

        restored = WizardState.from_dict(json.loads(json.dumps(state.to_dict())))

        assert restored == state
        assert restored.submission.phase == SubmissionPhase.ERRORED
        assert restored.submission.resume_phase == SubmissionPhase.REVIEWING


@pytest.mark.unit
@pytest.mark.asyncio
class TestSessionStore:

    async def test_create_and_load(self, session_store, fake_redis):
        state = await session_store.create()
        key = f"wizard:{state.session_id}"
        assert key in fake_redis.data
        assert fake_redis.expiry[key] == 7200

        loaded = await session_store.load(state.session_id)
        assert loaded == state

    async def test_save_refreshes_state(self, session_store):
        state = await session_store.create()
        state.merge_step_data({"first_name": "Jane"})
        state.advance()
        await session_store.save(state)

        loaded = await session_store.load(state.session_id)
        assert loaded.current_step == 1
        assert loaded.draft == {"first_name": "Jane"}

    async def test_unknown_session(self, session_store):
        with pytest.raises(ResourceNotFoundError):
            await session_store.load("missing")

    async def test_discard(self, session_store):
        state = await session_store.create()
        await session_store.discard(state.session_id)
        with pytest.raises(ResourceNotFoundError):
            await session_store.load(state.session_id)

    async def test_exclusive_rejects_a_second_holder(self, session_store, fake_redis):
        state = await session_store.create()

        async with session_store.exclusive(state.session_id, "PAYMENT_IN_PROGRESS"):
            assert f"wizard-lock:{state.session_id}" in fake_redis.data
            with pytest.raises(SubmissionStateError) as exc_info:
                async with session_store.exclusive(state.session_id, "PAYMENT_IN_PROGRESS"):
                    pass
            assert exc_info.value.status_code == 409
            assert exc_info.value.error_code == "PAYMENT_IN_PROGRESS"

        assert f"wizard-lock:{state.session_id}" not in fake_redis.data

    async def test_exclusive_clears_stale_in_flight_flags(self, session_store):
        state = await session_store.create()
        state.submission_in_flight = True
        await session_store.save(state)

        async with session_store.exclusive(state.session_id) as locked:
            assert not locked.submission_in_flight

    async def test_exclusive_releases_lock_for_unknown_session(self, session_store, fake_redis):
        with pytest.raises(ResourceNotFoundError):
            async with session_store.exclusive("missing"):
                pass
        assert "wizard-lock:missing" not in fake_redis.data
