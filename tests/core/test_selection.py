import random

from wallcycle.config import SelectionSettings
from wallcycle.selection import RelaxationLevel, pick_images_for_outputs
from wallcycle.state import RotationState


def _settings(per_output=10, global_cooldown=20, avoid=True):
    return SelectionSettings(
        per_output_cooldown=per_output,
        global_cooldown=global_cooldown,
        avoid_same_tick_duplicates=avoid,
    )


def test_two_outputs_get_distinct_images_from_empty_state():
    state = RotationState()

    picks = pick_images_for_outputs(["DP-1", "DP-2"], ["a", "b", "c"], state, _settings(), random.Random(3))
    for pick in picks:
        state.commit(pick.output, pick.path, now=1)

    assert [pick.output for pick in picks] == ["DP-1", "DP-2"]
    assert len({pick.path for pick in picks}) == 2
    assert {pick.path for pick in picks} <= {"a", "b", "c"}
    assert set(state.last_assigned) == {"DP-1", "DP-2"}
    assert all(pick.level is RelaxationLevel.STRICT for pick in picks)


def test_empty_pool_yields_no_picks():
    assert pick_images_for_outputs(["DP-1"], [], RotationState(), _settings()) == []


def test_single_image_pool_relaxes_instead_of_failing():
    state = RotationState()
    state.commit("DP-1", "only", now=1)

    picks = pick_images_for_outputs(["DP-1"], ["only"], state, _settings(2, 2), random.Random(0))

    assert [pick.path for pick in picks] == ["only"]
    assert picks[0].level is RelaxationLevel.RELAX_COOLDOWNS


def test_single_image_pool_for_two_outputs_falls_back_to_any():
    picks = pick_images_for_outputs(["DP-1", "DP-2"], ["only"], RotationState(), _settings(), random.Random(0))

    assert [pick.path for pick in picks] == ["only", "only"]
    assert picks[0].level is RelaxationLevel.STRICT
    assert picks[1].level is RelaxationLevel.ANY


def test_no_same_tick_reuse_when_enough_candidates():
    pool = ["a", "b", "c", "d"]
    outputs = ["DP-1", "DP-2", "DP-3", "DP-4"]
    for seed in range(20):
        picks = pick_images_for_outputs(outputs, pool, RotationState(), _settings(), random.Random(seed))
        assert len({pick.path for pick in picks}) == 4


def test_same_tick_duplicates_allowed_when_disabled():
    state = RotationState()
    state.commit("DP-1", "b", now=1)
    state.commit("DP-2", "b", now=1)

    picks = pick_images_for_outputs(
        ["DP-1", "DP-2"], ["a", "b"], state, _settings(avoid=False), random.Random(0)
    )

    assert [pick.path for pick in picks] == ["a", "a"]


def test_global_cooldown_relaxed_before_per_output_cooldown():
    state = RotationState()
    # "a" was recently on another output only: banned globally, allowed for DP-1.
    state.commit("DP-2", "a", now=1)
    # "b" was recently on DP-1: banned for that output and globally.
    state.commit("DP-1", "b", now=2)

    picks = pick_images_for_outputs(["DP-1"], ["a", "b"], state, _settings(), random.Random(0))

    assert picks[0].path == "a"
    assert picks[0].level is RelaxationLevel.RELAX_GLOBAL


def test_zero_global_cooldown_only_applies_per_output_window():
    state = RotationState()
    state.commit("DP-1", "a", now=1)

    picks = pick_images_for_outputs(
        ["DP-1"], ["a", "b"], state, _settings(per_output=1, global_cooldown=0), random.Random(0)
    )

    assert picks[0].path == "b"
    assert picks[0].level is RelaxationLevel.STRICT


def test_cooldowns_only_consider_configured_window():
    state = RotationState()
    for path in ["x", "y", "z"]:
        state.commit("DP-1", path, now=1)

    picks = pick_images_for_outputs(
        ["DP-1"], ["x"], state, _settings(per_output=2, global_cooldown=2), random.Random(0)
    )

    assert picks[0].path == "x"
    assert picks[0].level is RelaxationLevel.STRICT


def test_relaxation_level_evaluator():
    banned_output = {"o"}
    banned_global = {"g"}
    used = {"u"}

    assert RelaxationLevel.STRICT.admits("free", banned_output, banned_global, used, True)
    assert not RelaxationLevel.STRICT.admits("g", banned_output, banned_global, used, True)
    assert RelaxationLevel.RELAX_GLOBAL.admits("g", banned_output, banned_global, used, True)
    assert not RelaxationLevel.RELAX_GLOBAL.admits("o", banned_output, banned_global, used, True)
    assert RelaxationLevel.RELAX_OUTPUT.admits("o", banned_output, banned_global, used, True)
    assert not RelaxationLevel.RELAX_COOLDOWNS.admits("u", banned_output, banned_global, used, True)
    assert RelaxationLevel.RELAX_COOLDOWNS.admits("u", banned_output, banned_global, used, False)
    assert RelaxationLevel.ANY.admits("u", banned_output, banned_global, used, True)


def test_selection_does_not_mutate_state():
    state = RotationState()
    state.commit("DP-1", "a", now=1)
    before = state.to_dict()

    pick_images_for_outputs(["DP-1", "DP-2"], ["a", "b", "c"], state, _settings(), random.Random(1))

    assert state.to_dict() == before
