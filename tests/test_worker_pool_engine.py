import threading

import httpx
import openai
import pytest

from rfi_extractor.errors import StorageError
from rfi_extractor.extraction.llm_client import ExtractionClient
from rfi_extractor.extraction.unit_processor import UnitProcessor
from rfi_extractor.models.extraction_models import Failure, FailureKind
from rfi_extractor.pipeline.work_partitioner import plan
from rfi_extractor.pipeline.worker_pool_engine import RunState, WorkerPoolEngine


class _FakeProcessor:
    """Succeeds for every unit except the ids listed in `fail`"""
    def __init__(self, result_factory, fail=(), on_process=None):
        self.result_factory = result_factory
        self.fail = set(fail)
        self.on_process = on_process
        self.calls = []
        self._lock = threading.Lock()

    def process(self, unit):
        with self._lock:
            self.calls.append(unit.id)
        if self.on_process:
            self.on_process(unit)
        if unit.id in self.fail:
            return Failure(unit.id, FailureKind.TRANSIENT, "service unavailable", attempts=3)
        return self.result_factory(unit.id, (1, 2))


def _group_files(checkpoint_dir):
    return sorted(p.name for p in checkpoint_dir.glob("group_*.json"))


def test_group_size_two_over_three_units(store, settings, make_units, result_factory, checkpoint_dir):
    processor = _FakeProcessor(result_factory)
    report = WorkerPoolEngine(store, processor, settings).run(make_units("A", "B", "C"))

    assert report.state == RunState.DONE.value
    assert report.groups_planned == 2
    assert report.groups_saved == 2
    assert report.succeeded == 3
    assert report.records_extracted == 6
    assert _group_files(checkpoint_dir) == ["group_000001_A.json", "group_000002_C.json"]
    assert [g.unit_ids for g in store.load_all()] == [["A", "B"], ["C"]]


def test_crash_during_second_save_resumes_with_remaining_unit(store, settings, make_units, result_factory,
                                                              monkeypatch):
    units = make_units("A", "B", "C")
    real_save = store.save_group
    saves = []

    def _save_then_fail(results):
        saves.append([r.unit_id for r in results])
        if len(saves) == 2:
            raise StorageError("disk full")
        return real_save(results)

    monkeypatch.setattr(store, "save_group", _save_then_fail)
    with pytest.raises(StorageError):
        WorkerPoolEngine(store, _FakeProcessor(result_factory), settings).run(units)
    assert store.list_completed_ids() == {"A", "B"}

    monkeypatch.setattr(store, "save_group", real_save)
    processor = _FakeProcessor(result_factory)
    report = WorkerPoolEngine(store, processor, settings).run(units)

    assert processor.calls == ["C"]
    assert report.remaining_at_start == 1
    assert store.list_completed_ids() == {"A", "B", "C"}


def test_failed_unit_is_isolated_and_retried_next_run(store, settings, make_units, result_factory):
    units = make_units("A", "B", "C", "D")
    report = WorkerPoolEngine(store, _FakeProcessor(result_factory, fail={"B"}), settings).run(units)

    assert report.state == RunState.DONE.value
    assert report.failed_unit_ids == ["B"]
    assert report.succeeded == 3
    assert store.list_completed_ids() == {"A", "C", "D"}

    processor = _FakeProcessor(result_factory)
    WorkerPoolEngine(store, processor, settings).run(units)
    assert processor.calls == ["B"]
    assert store.list_completed_ids() == {"A", "B", "C", "D"}


def test_all_failed_group_writes_no_checkpoint(store, settings, make_units, result_factory, checkpoint_dir):
    processor = _FakeProcessor(result_factory, fail={"A", "B"})
    report = WorkerPoolEngine(store, processor, settings).run(make_units("A", "B", "C"))

    assert report.groups_saved == 1
    assert _group_files(checkpoint_dir) == ["group_000001_C.json"]
    assert sorted(report.failed_unit_ids) == ["A", "B"]


def test_rerun_after_completion_is_a_no_op(store, settings, make_units, result_factory, checkpoint_dir):
    units = make_units("A", "B", "C")
    WorkerPoolEngine(store, _FakeProcessor(result_factory), settings).run(units)
    files_before = _group_files(checkpoint_dir)

    processor = _FakeProcessor(result_factory)
    report = WorkerPoolEngine(store, processor, settings).run(units)

    assert processor.calls == []
    assert report.state == RunState.DONE.value
    assert report.groups_planned == 0
    assert _group_files(checkpoint_dir) == files_before


def test_stop_request_is_honored_at_group_boundary(store, settings, make_units, result_factory):
    units = make_units("A", "B", "C", "D", "E")
    engine = None

    def _stop_on_first(unit):
        if unit.id == "A":
            engine.request_stop()

    processor = _FakeProcessor(result_factory, on_process=_stop_on_first)
    engine = WorkerPoolEngine(store, processor, settings)
    report = engine.run(units)

    # The group in flight finishes and is saved; nothing after it starts
    assert report.state == RunState.STOPPED.value
    assert engine.state == RunState.STOPPED
    assert sorted(processor.calls) == ["A", "B"]
    assert store.list_completed_ids() == {"A", "B"}


def test_results_are_buffered_in_input_order(store, settings, make_units, result_factory):
    settings = settings.with_overrides(GROUP_SIZE=4, MAX_PARALLEL_WORKERS=4)
    WorkerPoolEngine(store, _FakeProcessor(result_factory), settings).run(make_units("D", "C", "B", "A"))
    assert store.load_all()[0].unit_ids == ["D", "C", "B", "A"]


def test_partial_files_are_purged_before_planning(store, settings, make_units, result_factory, checkpoint_dir):
    checkpoint_dir.mkdir(parents=True)
    (checkpoint_dir / "group_000001_A.json.tmp").write_text("{", encoding="utf-8")

    WorkerPoolEngine(store, _FakeProcessor(result_factory), settings).run(make_units("A"))

    assert list(checkpoint_dir.glob("*.tmp")) == []
    assert store.list_completed_ids() == {"A"}


def test_progress_log_tracks_the_run(store, settings, make_units, result_factory, checkpoint_dir):
    WorkerPoolEngine(store, _FakeProcessor(result_factory), settings).run(make_units("A", "B", "C"))
    log = (checkpoint_dir / "processing_progress.log").read_text(encoding="utf-8")

    assert "🚀 Started: 3 documents remaining of 3" in log
    assert "Overall progress: 2/3" in log
    assert "Overall progress: 3/3 (100.0%)" in log
    assert "🎉 Run complete" in log


def test_unit_that_keeps_timing_out_is_left_for_next_run(store, settings, make_units, fake_openai_client,
                                                          sample_response, no_sleep_policy, sleeps):
    units = make_units("A", "B", "C")
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")

    def _respond(kwargs):
        if "Document ID: C\n" in kwargs["messages"][0]["content"]:
            return openai.APITimeoutError(request=request)
        return sample_response()

    fake = fake_openai_client(_respond)
    processor = UnitProcessor(ExtractionClient(client=fake), no_sleep_policy)
    report = WorkerPoolEngine(store, processor, settings).run(units)

    c_calls = [c for c in fake.chat.completions.calls if "Document ID: C\n" in c["messages"][0]["content"]]
    assert len(c_calls) == 3
    assert len(sleeps) == 2
    assert [(f.unit_id, f.kind, f.attempts) for f in report.failures] == [("C", FailureKind.TRANSIENT, 3)]
    assert report.state == RunState.DONE.value
    assert [g.unit_ids for g in store.load_all()] == [["A", "B"]]
    assert [[u.id for u in group] for group in plan(units, store.list_completed_ids(), 2)] == [["C"]]
