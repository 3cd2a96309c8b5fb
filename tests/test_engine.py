"""
Unit tests for the progression decision engine and its helpers.

Values are hand-computed from the rules in core/config.py so the tests
double as worked examples of each policy.
"""

import json

import pytest

from progressor.core.adaptation import should_rotate_exercise
from progressor.core.config import backoff_seconds, round_weight
from progressor.core.engine import (
    EngineRules,
    decide_progression,
    engine_rules_from_config,
    failed_lower_bound,
    get_warmup_strategy,
    representative_weight,
    resolve_session_rpe,
    working_sets,
)
from progressor.core.equipment import build_increment_table, get_increment, infer_equipment, resolve_equipment
from progressor.core.errors import EngineInputInvalid
from progressor.core.models import (
    CheckIn,
    EngineInput,
    ExerciseInput,
    HistoryEntry,
    OverrideSignals,
    ProgressionState,
    RepRange,
    SetPerformance,
)
from progressor.io.serializers import parse_rep_range, parse_session_payload

# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

DATE = "2026-02-16"


def _sets(*pairs: tuple[int, float]) -> tuple[SetPerformance, ...]:
    return tuple(SetPerformance(reps=r, weight=w) for r, w in pairs)


def _uniform(reps_list: list[int], weight: float) -> tuple[SetPerformance, ...]:
    return tuple(SetPerformance(reps=r, weight=weight) for r in reps_list)


def _exercise(
    sets: tuple[SetPerformance, ...],
    *,
    exercise_id: str = "bench_press",
    low: int = 8,
    high: int = 12,
    effort: str | None = "working",
    equipment: str | None = None,
    weight_inverted: bool = False,
) -> ExerciseInput:
    return ExerciseInput(
        exercise_id=exercise_id,
        rep_range=RepRange(low, high),
        sets=sets,
        effort=effort,
        equipment=equipment,
        weight_inverted=weight_inverted,
    )


def _state(weight: float, *, stall: int = 0, deloads: int = 0, exercise_id: str = "bench_press") -> ProgressionState:
    return ProgressionState(
        user_id="u1",
        exercise_id=exercise_id,
        current_weight=weight,
        stall_count=stall,
        deload_count=deloads,
    )


def _decide(exercise: ExerciseInput, state: ProgressionState | None = None, **kwargs):
    return decide_progression(
        EngineInput(user_id="u1", exercise=exercise, workout_date=DATE, state=state, **kwargs),
        EngineRules(),
    )


# ---------------------------------------------------------------------------
# Core progression scenarios
# ---------------------------------------------------------------------------


class TestFirstSession:
    def test_warmup_excluded_and_weight_increased(self):
        """Empty history, one light warm-up then three sets at the top of the range."""
        ex = _exercise(_sets((10, 40), (12, 60), (12, 60), (12, 60)))
        decision = _decide(ex, session_rpe=7)

        assert decision.action == "increase_weight"
        assert decision.new_weight == 62.5
        assert decision.next_state.current_weight == 62.5
        assert decision.next_state.stall_count == 0
        assert decision.next_state.status == "progressing"
        assert decision.next_state.last_progress_date == DATE
        assert decision.details["warmup_sets"] == 1
        assert decision.details["bootstrapped"] is True

    def test_bootstrap_uses_modal_weight(self):
        ex = _exercise(_sets((10, 57.5), (10, 60), (9, 60)))
        decision = _decide(ex)
        assert decision.action == "maintain"
        assert decision.reason == "within_range"
        assert decision.new_weight == 60


class TestAntiOverreach:
    def test_hard_effort_at_rpe_9_caps_increase(self):
        ex = _exercise(_uniform([12, 12, 12], 62.5), effort="hard")
        decision = _decide(ex, _state(62.5), session_rpe=9)

        assert decision.action == "maintain"
        assert decision.reason == "anti_overreach"
        assert decision.new_weight == 62.5
        assert decision.next_state.stall_count == 0

    def test_max_effort_without_rpe_counts_as_overreach(self):
        ex = _exercise(_uniform([12, 12, 12], 62.5), effort="max")
        decision = _decide(ex, _state(62.5))
        assert decision.reason == "anti_overreach"

    def test_hard_effort_below_rpe_threshold_progresses(self):
        ex = _exercise(_uniform([12, 12, 12], 62.5), effort="hard")
        decision = _decide(ex, _state(62.5), session_rpe=8)
        assert decision.action == "increase_weight"
        assert decision.new_weight == 65.0

    def test_does_not_mask_failure(self):
        ex = _exercise(_uniform([6, 6, 6], 100), effort="hard")
        decision = _decide(ex, _state(100), session_rpe=9.5)
        assert decision.failed_lower_bound is True
        assert decision.next_state.stall_count == 1


class TestFailureAndStall:
    def test_strict_majority_below_range_is_failure(self):
        ex = _exercise(_uniform([7, 7, 8], 100))
        decision = _decide(ex, _state(100))

        assert decision.failed_lower_bound is True
        assert decision.action == "maintain"
        assert decision.reason == "failed_lower_bound"
        assert decision.next_state.stall_count == 1
        assert decision.new_weight == 100

    def test_half_below_range_is_not_failure(self):
        ex = _exercise(_uniform([7, 7, 8, 8], 100))
        decision = _decide(ex, _state(100, stall=1))

        assert decision.failed_lower_bound is False
        assert decision.reason == "within_range"
        assert decision.next_state.stall_count == 1

    def test_deload_at_stall_threshold(self):
        ex = _exercise(_uniform([6, 6, 6], 100))
        decision = _decide(ex, _state(100, stall=2))

        assert decision.action == "deload"
        assert decision.new_weight == 85.0
        assert decision.next_state.status == "deloading"
        assert decision.next_state.stall_count == 0
        assert decision.next_state.deload_count == 1

    def test_lose_weight_goal_waits_longer(self):
        ex = _exercise(_uniform([6, 6, 6], 100))
        decision = _decide(ex, _state(100, stall=2), goal="lose_weight")
        assert decision.action == "maintain"
        assert decision.next_state.stall_count == 3

    def test_lose_weight_deload_fraction(self):
        ex = _exercise(_uniform([6, 6, 6], 100))
        decision = _decide(ex, _state(100, stall=3), goal="lose_weight")
        assert decision.action == "deload"
        assert decision.new_weight == 80.0

    def test_unknown_goal_uses_default_rules(self):
        ex = _exercise(_uniform([6, 6, 6], 100))
        decision = _decide(ex, _state(100, stall=2), goal="powerlifting")
        assert decision.action == "deload"

    def test_increase_resets_stall(self):
        ex = _exercise(_uniform([12, 12, 12], 100))
        decision = _decide(ex, _state(100, stall=2))
        assert decision.next_state.stall_count == 0

    def test_zero_rep_sets_are_not_working_sets(self):
        """Prefilled sets that were never logged do not count as failures."""
        ex = _exercise(_uniform([9, 9, 0, 0, 0], 100))
        decision = _decide(ex, _state(100, stall=1))

        assert decision.details["working_sets"] == 2
        assert decision.details["fail_count"] == 0
        assert decision.details["unlogged_sets"] == 3
        assert decision.failed_lower_bound is False
        assert decision.reason == "within_range"
        assert decision.next_state.stall_count == 1

    def test_only_zero_rep_sets_maintain(self):
        ex = _exercise(_uniform([0, 0, 0], 100))
        decision = _decide(ex, _state(100, stall=1))
        assert decision.reason == "no_working_sets"
        assert decision.next_state.stall_count == 1


class TestAssisted:
    def test_progress_reduces_assistance(self):
        ex = _exercise(_uniform([12, 12, 12], 30), exercise_id="assisted_pull_up", equipment="machine", weight_inverted=True)
        decision = _decide(ex, _state(30, exercise_id="assisted_pull_up"))
        assert decision.action == "increase_weight"
        assert decision.new_weight == 28.0

    def test_deload_adds_assistance(self):
        ex = _exercise(_uniform([5, 5, 5], 30), exercise_id="assisted_pull_up", equipment="machine", weight_inverted=True)
        decision = _decide(ex, _state(30, stall=2, exercise_id="assisted_pull_up"))
        assert decision.action == "deload"
        assert decision.new_weight == 34.5

    def test_heavier_assistance_sets_are_warmups(self):
        sets = _sets((10, 50), (12, 30), (12, 30))
        working = working_sets(sets, EngineRules(), weight_inverted=True)
        assert [s.weight for s in working] == [30, 30]


class TestOverrides:
    FAILING = _uniform([5, 5, 5], 100)

    def test_light_intent_suspends_penalty(self):
        decision = _decide(_exercise(self.FAILING), _state(100, stall=2), signals=OverrideSignals(intent="light"))
        assert decision.action == "maintain"
        assert decision.reason == "override:light_intent"
        assert decision.failed_lower_bound is False
        assert decision.next_state.stall_count == 2

    def test_light_intent_wins_over_pain(self):
        signals = OverrideSignals(intent="light", checkin=CheckIn(pain_levels=(7,)))
        decision = _decide(_exercise(self.FAILING), _state(100), signals=signals)
        assert decision.reason == "override:light_intent"

    @pytest.mark.parametrize(
        "checkin, reason",
        [
            (CheckIn(pain_levels=(2, 4)), "override:checkin_pain"),
            (CheckIn(sleep="poor"), "override:checkin_sleep"),
            (CheckIn(stress="very_high"), "override:checkin_stress"),
            (CheckIn(energy="low"), "override:checkin_energy"),
        ],
    )
    def test_checkin_overrides(self, checkin, reason):
        decision = _decide(_exercise(self.FAILING), _state(100), signals=OverrideSignals(checkin=checkin))
        assert decision.reason == reason
        assert decision.next_state.stall_count == 0

    def test_mild_pain_does_not_override(self):
        decision = _decide(_exercise(self.FAILING), _state(100), signals=OverrideSignals(checkin=CheckIn(pain_levels=(3,))))
        assert decision.failed_lower_bound is True

    def test_low_volume(self):
        ex = _exercise(_uniform([5, 5], 100))
        decision = _decide(ex, _state(100), signals=OverrideSignals(planned_sets=4))
        assert decision.reason == "override:low_volume"

    def test_three_of_four_planned_sets_is_enough(self):
        ex = _exercise(_uniform([5, 5, 5], 100))
        decision = _decide(ex, _state(100), signals=OverrideSignals(planned_sets=4))
        assert decision.reason == "failed_lower_bound"

    def test_short_session(self):
        signals = OverrideSignals(planned_duration_min=60, performed_duration_min=30)
        decision = _decide(_exercise(self.FAILING), _state(100), signals=signals)
        assert decision.reason == "override:short_session"

    def test_override_also_blocks_increase(self):
        ex = _exercise(_uniform([12, 12, 12], 100))
        decision = _decide(ex, _state(100), signals=OverrideSignals(intent="light"))
        assert decision.action == "maintain"
        assert decision.new_weight == 100


class TestEquipmentIncrements:
    def test_dumbbell_increment(self):
        ex = _exercise(_uniform([12, 12, 12], 20), exercise_id="db_curl")
        decision = _decide(ex, _state(20, exercise_id="db_curl"))
        assert decision.new_weight == 21.0

    def test_bodyweight_has_zero_increment(self):
        ex = _exercise(_uniform([15, 15, 15], 0), exercise_id="push_up")
        decision = _decide(ex, _state(0, exercise_id="push_up"))
        assert decision.action == "increase_weight"
        assert decision.new_weight == 0

    def test_unknown_equipment_defaults_to_barbell_step(self):
        assert get_increment(resolve_equipment(None, "mystery_move"), build_increment_table()) == 2.5

    def test_inference(self):
        assert infer_equipment("Leg Press") == "machine"
        assert infer_equipment("incline_db_press") == "dumbbell"
        assert infer_equipment("kb_swing") == "kettlebell"
        assert infer_equipment("pull_up") == "bodyweight"

    def test_explicit_equipment_wins(self):
        assert resolve_equipment("Cable", "db_fly") == "cable"

    def test_env_override(self):
        table = build_increment_table(environ={"PROGRESSION_INCREMENT_DUMBBELL": "2"})
        assert table["dumbbell"] == 2.0

    def test_invalid_env_override_ignored(self):
        table = build_increment_table(environ={"PROGRESSION_INCREMENT_BARBELL": "-1", "PROGRESSION_INCREMENT_SLED": "x"})
        assert table["barbell"] == 2.5
        assert table["sled"] == 5.0


class TestHelpers:
    def test_failed_lower_bound_is_proportional(self):
        assert failed_lower_bound(list(_uniform([7, 7, 7], 50)), 8) is True
        assert failed_lower_bound(list(_uniform([7, 7, 8, 8], 50)), 8) is False
        assert failed_lower_bound([], 8) is False

    def test_session_rpe_resolution(self):
        assert resolve_session_rpe(6.5, "max") == 6.5
        assert resolve_session_rpe(None, "quite_hard") == 8
        assert resolve_session_rpe(None, None) == 7

    def test_modal_warmup_strategy(self):
        rules = EngineRules(warmup_strategy="modal_weight")
        working = working_sets(_sets((8, 55), (8, 60), (8, 60), (6, 62.5)), rules)
        assert [s.weight for s in working] == [60, 60, 62.5]

    def test_unknown_strategy_rejected(self):
        with pytest.raises(ValueError):
            get_warmup_strategy("nope")

    def test_unperformed_sets_ignored(self):
        working = working_sets(_sets((0, 0), (10, 60), (10, 60)), EngineRules())
        assert len(working) == 2

    def test_representative_weight_tie_goes_heavier(self):
        assert representative_weight(_sets((8, 60), (8, 65))) == 65

    def test_no_working_sets(self):
        decision = _decide(_exercise(()), _state(50))
        assert decision.reason == "no_working_sets"

    def test_round_weight(self):
        assert round_weight(62.3) == 62.25
        assert round_weight(84.99) == 85.0

    def test_backoff(self):
        assert backoff_seconds(1) == 30
        assert backoff_seconds(2) == 60
        assert backoff_seconds(7) == 1920
        assert backoff_seconds(8) == 3600
        assert backoff_seconds(50) == 3600

    def test_rules_from_config(self):
        rules = engine_rules_from_config(
            {"goals": {"build_muscle": {"stall_threshold": 2}}, "warmup": {"strategy": "modal_weight"}},
            environ={},
        )
        assert rules.for_goal("build_muscle").stall_threshold == 2
        assert rules.for_goal("build_muscle").deload_fraction == 0.15
        assert rules.warmup_strategy == "modal_weight"


class TestRotation:
    def _history(self, *dates: str) -> list[HistoryEntry]:
        return [HistoryEntry("u1", "bench_press", f"s{i}", d) for i, d in enumerate(dates)]

    def test_two_deloads_suggest_rotation(self):
        assert should_rotate_exercise(_state(80, deloads=2), [], DATE) is True

    def test_long_plateau_with_recent_sessions(self):
        state = ProgressionState("u1", "bench_press", 80, last_progress_date="2025-12-01")
        history = self._history("2026-02-10", "2026-02-14")
        assert should_rotate_exercise(state, history, DATE) is True

    def test_plateau_without_recent_sessions(self):
        state = ProgressionState("u1", "bench_press", 80, last_progress_date="2025-12-01")
        assert should_rotate_exercise(state, self._history("2026-01-10"), DATE) is False

    def test_fresh_exercise(self):
        assert should_rotate_exercise(_state(80), [], DATE) is False


class TestPayloadParsing:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("8-12", (8, 12)),
            ("6–10", (6, 10)),
            ("10", (8, 12)),
            (5, (3, 7)),
            ([6, 10], (6, 10)),
            (None, (8, 12)),
        ],
    )
    def test_rep_ranges(self, raw, expected):
        rr = parse_rep_range(raw)
        assert (rr.low, rr.high) == expected

    @pytest.mark.parametrize("raw", ["abc", "12-8", [1, 2, 3], True, 0])
    def test_bad_rep_ranges(self, raw):
        with pytest.raises(EngineInputInvalid):
            parse_rep_range(raw)

    def test_valid_payload(self):
        session = parse_session_payload({
            "durationMin": 50,
            "exercises": [{"id": "squat", "targetRepRange": "5-8", "sets": [{"reps": 5, "weight": 100}]}],
            "feedback": {"sessionRpe": 8},
        })
        assert session.session_rpe == 8
        assert session.duration_min == 50
        assert session.exercises[0].rep_range == RepRange(5, 8)

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"exercises": "squat"},
            {"exercises": [{"id": "squat", "sets": [{"reps": -1, "weight": 100}]}]},
            {"exercises": [{"id": "squat", "sets": [{"reps": "ten", "weight": 100}]}]},
            {"exercises": [{"id": "squat", "sets": [{"reps": 8.5, "weight": 100}]}]},
            {"exercises": [{"id": "squat"}, {"id": "squat"}]},
            {"exercises": [{"id": "squat", "effort": "insane"}]},
            {"exercises": [], "feedback": {"sessionRpe": 11}},
        ],
    )
    def test_malformed_payloads(self, payload):
        with pytest.raises(EngineInputInvalid):
            parse_session_payload(payload)

    @pytest.mark.parametrize(
        "raw",
        [
            '{"exercises": [{"id": "bench_press", "sets": [{"reps": Infinity, "weight": 60}]}]}',
            '{"exercises": [{"id": "bench_press", "sets": [{"reps": 10, "weight": Infinity}]}]}',
            '{"exercises": [{"id": "bench_press", "sets": [{"reps": 10, "weight": NaN}]}]}',
        ],
    )
    def test_non_finite_numbers_rejected(self, raw):
        with pytest.raises(EngineInputInvalid, match="finite"):
            parse_session_payload(json.loads(raw))

    def test_non_finite_rep_range_bound_rejected(self):
        with pytest.raises(EngineInputInvalid):
            parse_rep_range([8, float("inf")])
