import json

from wallcycle.state import RECENT_LIMIT, RotationState, StateStore, push_recent


def test_push_recent_moves_existing_value_to_end():
    assert push_recent(["a", "b", "c"], "a") == ["b", "c", "a"]


def test_push_recent_truncates_from_front():
    queue = [str(index) for index in range(RECENT_LIMIT)]

    updated = push_recent(queue, "new")

    assert len(updated) == RECENT_LIMIT
    assert updated[0] == "1"
    assert updated[-1] == "new"


def test_commit_records_assignment_and_bounds_queues():
    state = RotationState()

    for index in range(RECENT_LIMIT * 3):
        state.commit("DP-1", f"/img/{index}.jpg", now=index)
        state.commit("HDMI-A-1", f"/img/other-{index}.jpg", now=index)

    assert state.last_assigned["DP-1"] == f"/img/{RECENT_LIMIT * 3 - 1}.jpg"
    assert len(state.recent_global) <= RECENT_LIMIT
    assert all(len(queue) <= RECENT_LIMIT for queue in state.recent_by_output.values())
    assert state.last_updated == RECENT_LIMIT * 3 - 1


def test_cleanup_disconnected_outputs_forgets_vanished_displays():
    state = RotationState()
    state.commit("DP-1", "/img/a.jpg", now=1)
    state.commit("DP-2", "/img/b.jpg", now=2)

    state.cleanup_disconnected_outputs(["DP-1"])

    assert state.last_outputs == ["DP-1"]
    assert set(state.last_assigned) == {"DP-1"}
    assert set(state.recent_by_output) == {"DP-1"}
    assert state.recent_global == ["/img/a.jpg", "/img/b.jpg"]


def test_set_mode_rejects_unknown_values():
    state = RotationState()

    state.set_mode("rotate", now=5)

    assert state.mode == "rotate"
    assert state.last_updated == 5
    try:
        state.set_mode("shuffle")
    except ValueError:
        pass
    else:  # pragma: no cover - assertion helper
        raise AssertionError("expected ValueError")


def test_load_missing_file_writes_defaults(tmp_path):
    path = tmp_path / "state.json"
    store = StateStore(path)

    state = store.load()

    assert state == RotationState()
    assert json.loads(path.read_text())["mode"] == "manual"


def test_load_repairs_malformed_shape_and_writes_back(tmp_path):
    path = tmp_path / "state.json"
    payload = {
        "mode": "party",
        "currentPack": 3,
        "lastAssigned": ["not", "a", "map"],
        "recentByOutput": {"DP-1": "oops", "DP-2": [f"/p/{i}" for i in range(25)]},
        "recentGlobal": [f"/g/{i}" for i in range(30)],
        "lastUpdated": "yesterday",
    }
    path.write_text(json.dumps(payload))

    state = StateStore(path).load()

    assert state.mode == "manual"
    assert state.current_pack is None
    assert state.last_assigned == {}
    assert state.recent_by_output["DP-1"] == []
    assert state.recent_by_output["DP-2"] == [f"/p/{i}" for i in range(15, 25)]
    assert state.recent_global == [f"/g/{i}" for i in range(20, 30)]
    assert state.last_updated == 0
    assert json.loads(path.read_text()) == state.to_dict()


def test_load_does_not_rewrite_clean_file(tmp_path):
    path = tmp_path / "state.json"
    state = RotationState(mode="rotate", current_pack="nature", last_updated=7)
    state.commit("DP-1", "/img/a.jpg", now=7)
    path.write_text(json.dumps(state.to_dict()))
    before = path.stat().st_mtime_ns

    loaded = StateStore(path).load()

    assert loaded == state
    assert path.stat().st_mtime_ns == before


def test_save_skips_identical_payload(tmp_path):
    path = tmp_path / "state.json"
    store = StateStore(path)
    state = store.load()

    assert store.save(state) is False

    state.commit("DP-1", "/img/a.jpg", now=1)
    assert store.save(state) is True
    assert StateStore(path).load() == state


def test_lock_is_reentrant_for_same_store(tmp_path):
    store = StateStore(tmp_path / "state.json", lock_timeout=0.1)

    with store.lock():
        with store.lock():
            store.save(store.load())
        assert store.lock().held
    assert not store.lock().held
