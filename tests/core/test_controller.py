import random
from pathlib import Path

import pytest

from wallcycle.candidates import Candidate
from wallcycle.config import GlobalConfig, PoolSettings, PoolSourceSettings
from wallcycle.controller import Orchestrator
from wallcycle.errors import (
    HydrationFailure,
    NoImagesForPack,
    NoOutputsDetected,
    PackNotFound,
    PoolNotEnabled,
)
from wallcycle.history import HistoryStore
from wallcycle.pool import PoolAggregator
from wallcycle.sources import SourceStatus
from wallcycle.state import StateStore


class FakeSource:
    """Candidates live under ``root``; hydrate writes the file unless told to fail."""

    def __init__(self, name, root, count=3, *, on_disk=True, failing=()):
        self.name = name
        self.candidates = [
            Candidate(
                id=f"{name}-{index}",
                source=name,
                url=f"https://img.test/{name}/{index}.jpg",
                local_path_hint=str(root / name / f"{index}.jpg"),
            )
            for index in range(count)
        ]
        self.failing = set(failing)
        self.hydrated = []
        self.refreshed = 0
        if on_disk:
            for candidate in self.candidates:
                candidate.local_path.parent.mkdir(parents=True, exist_ok=True)
                candidate.local_path.write_bytes(b"pixels")

    def refresh_index(self):
        self.refreshed += 1
        return len(self.candidates)

    def list_candidates(self):
        return list(self.candidates)

    def local_path_for(self, candidate):
        return candidate.local_path

    def hydrate(self, candidate):
        if candidate.id in self.failing:
            raise HydrationFailure(f"download failed for {candidate.url}")
        candidate.local_path.parent.mkdir(parents=True, exist_ok=True)
        candidate.local_path.write_bytes(b"pixels")
        self.hydrated.append(candidate.id)
        return candidate.local_path

    def status(self):
        return SourceStatus(name=self.name, ok=True, candidates=len(self.candidates))


class RecordingApplier:
    def __init__(self):
        self.calls = []

    def apply(self, picks):
        self.calls.append([(pick.output, pick.path) for pick in picks])


def _orchestrator(tmp_path, sources, outputs=("DP-1", "DP-2"), pool=None, history=True):
    config = GlobalConfig(pool=pool or PoolSettings())
    applier = RecordingApplier()
    orchestrator = Orchestrator(
        config,
        sources=sources,
        aggregator=PoolAggregator(config.pool, sources),
        state_store=StateStore(tmp_path / "state" / "state.json", lock_timeout=1),
        applier=applier,
        detect_outputs=lambda: list(outputs),
        history=HistoryStore(tmp_path / "state" / "history.json") if history else None,
        rng=random.Random(7),
        clock=lambda: 1_700_000_000.0,
    )
    return orchestrator, applier


def test_rotate_named_pack_applies_and_commits(tmp_path):
    source = FakeSource("nature", tmp_path)
    orchestrator, applier = _orchestrator(tmp_path, {"nature": source})

    result = orchestrator.rotate("Nature")

    assert result.pack == "nature"
    assert result.outputs == ["DP-1", "DP-2"]
    assert len({pick.path for pick in result.picks}) == 2
    assert applier.calls == [[(pick.output, pick.path) for pick in result.picks]]
    state = orchestrator.state_store.load()
    assert state.current_pack == "nature"
    assert state.last_updated == 1_700_000_000_000
    assert set(state.last_assigned) == {"DP-1", "DP-2"}


def test_rotate_appends_history(tmp_path):
    orchestrator, _ = _orchestrator(tmp_path, {"nature": FakeSource("nature", tmp_path)})

    result = orchestrator.rotate("nature")

    entries = orchestrator.history.entries()
    assert [(entry.output, entry.path) for entry in entries] == [
        (pick.output, pick.path) for pick in result.picks
    ]
    assert all(entry.pack == "nature" for entry in entries)


def test_rotate_without_outputs_raises(tmp_path):
    orchestrator, applier = _orchestrator(tmp_path, {"nature": FakeSource("nature", tmp_path)}, outputs=())

    with pytest.raises(NoOutputsDetected):
        orchestrator.rotate("nature")
    assert applier.calls == []


def test_rotate_unknown_pack_raises(tmp_path):
    orchestrator, _ = _orchestrator(tmp_path, {"nature": FakeSource("nature", tmp_path)})

    with pytest.raises(PackNotFound) as excinfo:
        orchestrator.rotate("space")
    assert excinfo.value.pack == "space"


def test_rotate_without_any_pack_raises(tmp_path):
    orchestrator, _ = _orchestrator(tmp_path, {})

    with pytest.raises(PackNotFound):
        orchestrator.rotate()


def test_rotate_empty_pack_raises(tmp_path):
    orchestrator, _ = _orchestrator(tmp_path, {"empty": FakeSource("empty", tmp_path, count=0)})

    with pytest.raises(NoImagesForPack) as excinfo:
        orchestrator.rotate("empty")
    assert excinfo.value.to_dict()["error"] == "no_images_for_pack"


def test_rotate_pool_requires_enabled_pool(tmp_path):
    orchestrator, _ = _orchestrator(tmp_path, {"nature": FakeSource("nature", tmp_path)})

    with pytest.raises(PoolNotEnabled):
        orchestrator.rotate("pool")


def test_rotate_defaults_to_enabled_pool(tmp_path):
    sources = {
        "nature": FakeSource("nature", tmp_path, count=2),
        "city": FakeSource("city", tmp_path, count=2),
    }
    pool = PoolSettings(
        enabled=True,
        sources=[PoolSourceSettings(name="nature"), PoolSourceSettings(name="city")],
    )
    orchestrator, _ = _orchestrator(tmp_path, sources, pool=pool)

    result = orchestrator.rotate()

    assert result.pack == "pool"
    assert orchestrator.state_store.load().current_pack == "pool"


def test_rotate_hydrates_missing_images(tmp_path):
    source = FakeSource("remote", tmp_path, count=2, on_disk=False)
    orchestrator, applier = _orchestrator(tmp_path, {"remote": source})

    result = orchestrator.rotate("remote")

    assert sorted(source.hydrated) == ["remote-0", "remote-1"]
    assert all(Path(pick.path).is_file() for pick in result.picks)
    assert len(applier.calls) == 1


def test_rotate_skips_outputs_whose_image_failed(tmp_path):
    source = FakeSource("remote", tmp_path, count=2, on_disk=False, failing={"remote-0"})
    orchestrator, applier = _orchestrator(tmp_path, {"remote": source})

    result = orchestrator.rotate("remote")

    assert len(result.picks) == 1
    assert len(result.failures) == 1
    assert result.failures[0]["path"].endswith("0.jpg")
    assert result.to_dict()["failures"] == result.failures
    assert len(applier.calls[0]) == 1


def test_rotate_total_hydration_failure_leaves_state_untouched(tmp_path):
    source = FakeSource("remote", tmp_path, count=1, on_disk=False, failing={"remote-0"})
    orchestrator, applier = _orchestrator(tmp_path, {"remote": source}, outputs=("DP-1",))
    before = orchestrator.state_store.load().to_dict()

    with pytest.raises(HydrationFailure) as excinfo:
        orchestrator.rotate("remote")

    assert applier.calls == []
    assert excinfo.value.to_dict()["failures"][0]["output"] == "DP-1"
    assert orchestrator.state_store.load().to_dict() == before
    assert orchestrator.history.entries() == []


def test_rotate_forgets_disconnected_outputs(tmp_path):
    source = FakeSource("nature", tmp_path)
    orchestrator, _ = _orchestrator(tmp_path, {"nature": source})
    orchestrator.rotate("nature")

    orchestrator.detect_outputs = lambda: ["DP-1"]
    orchestrator.rotate("nature")

    state = orchestrator.state_store.load()
    assert state.last_outputs == ["DP-1"]
    assert set(state.last_assigned) == {"DP-1"}


def test_hydrate_pack_counts_downloads(tmp_path):
    source = FakeSource("remote", tmp_path, count=5, on_disk=False, failing={"remote-1"})
    orchestrator, _ = _orchestrator(tmp_path, {"remote": source})

    result = orchestrator.hydrate_pack("remote", 3)

    assert source.refreshed == 1
    assert result.to_dict() == {"pack": "remote", "downloaded": 2, "failed": 1}


def test_hydrate_pack_fails_when_nothing_downloads(tmp_path):
    source = FakeSource("remote", tmp_path, count=1, on_disk=False, failing={"remote-0"})
    orchestrator, _ = _orchestrator(tmp_path, {"remote": source})

    with pytest.raises(HydrationFailure):
        orchestrator.hydrate_pack("remote", 10)


def test_hydrate_pack_unknown_pack(tmp_path):
    orchestrator, _ = _orchestrator(tmp_path, {})

    with pytest.raises(PackNotFound):
        orchestrator.hydrate_pack("missing", 1)
