import json

import pytest

import extract_recommendations
from rfi_extractor.checkpoint.checkpoint_store import CheckpointStore
from rfi_extractor.errors import PlanningError, StorageError
from rfi_extractor.pipeline.extraction_pipeline import ExtractionPipeline


@pytest.fixture
def quiet_cli(monkeypatch, tmp_path):
    """Keep the CLI from reconfiguring root logging or reading a developer .env"""
    monkeypatch.setattr(extract_recommendations, "setup_colored_logging", lambda *a, **k: None)
    monkeypatch.setattr(extract_recommendations, "load_dotenv", lambda *a, **k: False)
    monkeypatch.chdir(tmp_path)


def _responder(sample_response, fail_for=()):
    def _respond(request):
        prompt = request["messages"][0]["content"]
        if any(f"Document ID: {uid}\n" in prompt for uid in fail_for):
            return "this is not json"
        return sample_response()
    return _respond


def test_end_to_end_run_and_finalize(settings, store, make_units, fake_openai_client, sample_response,
                                     no_sleep_policy, tmp_path):
    client = fake_openai_client(_responder(sample_response))
    pipeline = ExtractionPipeline(settings, store=store, openai_client=client, retry_policy=no_sleep_policy)

    report = pipeline.run(make_units("A", "B", "C"))
    results = pipeline.finalize(str(tmp_path / "final.json"))

    assert report.succeeded == 3
    assert results.documents_processed == 3
    assert results.records_extracted == 6
    assert (tmp_path / "final.json").exists()
    assert (tmp_path / "final.csv").exists()


def test_malformed_unit_is_retried_on_next_invocation(settings, store, make_units, fake_openai_client,
                                                      sample_response, no_sleep_policy):
    units = make_units("A", "B", "C")
    bad = fake_openai_client(_responder(sample_response, fail_for={"B"}))
    first = ExtractionPipeline(settings, store=store, openai_client=bad, retry_policy=no_sleep_policy)
    report = first.run(units)
    assert report.failed_unit_ids == ["B"]
    assert len(bad.chat.completions.calls) == 3

    good = fake_openai_client(_responder(sample_response))
    second = ExtractionPipeline(settings, store=store, openai_client=good, retry_policy=no_sleep_policy)
    second.run(units)

    assert len(good.chat.completions.calls) == 1
    assert store.list_completed_ids() == {"A", "B", "C"}


def test_stop_requested_before_run_saves_nothing(settings, store, make_units, fake_openai_client,
                                                 sample_response, no_sleep_policy):
    pipeline = ExtractionPipeline(settings, store=store, openai_client=fake_openai_client(
        _responder(sample_response)), retry_policy=no_sleep_policy)
    pipeline.request_stop()

    report = pipeline.run(make_units("A", "B"))

    assert report.state == "stopped"
    assert store.list_completed_ids() == set()


def test_unknown_mode_is_planning_error(settings, store):
    with pytest.raises(PlanningError):
        ExtractionPipeline(settings, store=store).build_engine("serial")


def test_status_reports_remaining(settings, store, make_units, result_factory):
    store.save_group([result_factory("A")])
    info = ExtractionPipeline(settings, store=store).status(make_units("A", "B", "C"))

    assert info["completed_units"] == 1
    assert info["remaining_units"] == 2
    assert info["batch_job"] is None


def test_cli_finalize_only_writes_outputs(quiet_cli, tmp_path, result_factory):
    checkpoint_dir = tmp_path / "ckpt"
    CheckpointStore(str(checkpoint_dir)).save_group([result_factory("A", (1, 2))])
    output = tmp_path / "results" / "all.json"

    code = extract_recommendations.main(["--finalize-only", "--checkpoint-dir", str(checkpoint_dir),
                                         "--output", str(output)])

    assert code == 0
    assert json.loads(output.read_text(encoding="utf-8"))["summary"]["records_extracted"] == 2
    assert output.with_suffix(".csv").exists()


def test_cli_cleanup_requires_confirmation(quiet_cli, tmp_path, result_factory):
    checkpoint_dir = tmp_path / "ckpt"
    CheckpointStore(str(checkpoint_dir)).save_group([result_factory("A")])
    args = ["--finalize-only", "--cleanup", "--checkpoint-dir", str(checkpoint_dir),
            "--output", str(tmp_path / "out.json")]

    assert extract_recommendations.main(args) == 1
    assert checkpoint_dir.exists()

    assert extract_recommendations.main(args + ["--yes"]) == 0
    assert not checkpoint_dir.exists()


def test_cli_requires_input_to_run(quiet_cli):
    assert extract_recommendations.main([]) == 1


def test_cli_missing_api_key_is_fatal(quiet_cli, tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    path = tmp_path / "subs.csv"
    path.write_text("submission_id,org_from_filename,full_text\n1,Org,text\n", encoding="utf-8")

    assert extract_recommendations.main(["--input", str(path), "--checkpoint-dir", str(tmp_path / "c")]) == 1


def test_cli_status(quiet_cli, tmp_path, capsys):
    code = extract_recommendations.main(["--status", "--checkpoint-dir", str(tmp_path / "ckpt")])
    assert code == 0
    assert "CHECKPOINT STATUS" in capsys.readouterr().out


def test_resume_command_repeats_arguments():
    command = extract_recommendations.resume_command(["--input", "my file.csv", "--workers", "8"])
    assert command == "python extract_recommendations.py --input 'my file.csv' --workers 8"


def test_crash_and_resume_matches_uninterrupted_run(settings, make_units, fake_openai_client, sample_response,
                                                    no_sleep_policy, tmp_path, monkeypatch):
    units = make_units("A", "B", "C", "D", "E")

    clean_store = CheckpointStore(str(tmp_path / "clean"))
    clean = ExtractionPipeline(settings, store=clean_store,
                               openai_client=fake_openai_client(_responder(sample_response)),
                               retry_policy=no_sleep_policy)
    clean.run(units)
    expected = clean.finalize()

    crash_store = CheckpointStore(str(tmp_path / "crash"))
    real_save = crash_store.save_group
    saves = []

    def _fail_second_save(results):
        saves.append(results)
        if len(saves) == 2:
            raise StorageError("disk full")
        return real_save(results)

    monkeypatch.setattr(crash_store, "save_group", _fail_second_save)
    first = ExtractionPipeline(settings, store=crash_store,
                               openai_client=fake_openai_client(_responder(sample_response)),
                               retry_policy=no_sleep_policy)
    with pytest.raises(StorageError):
        first.run(units)
    assert crash_store.list_completed_ids() == {"A", "B"}

    monkeypatch.setattr(crash_store, "save_group", real_save)
    resumed_client = fake_openai_client(_responder(sample_response))
    resumed = ExtractionPipeline(settings, store=crash_store, openai_client=resumed_client,
                                 retry_policy=no_sleep_policy)
    resumed.run(units)

    assert len(resumed_client.chat.completions.calls) == 3
    actual = resumed.finalize()
    assert actual.records == expected.records
    assert actual.summary() == expected.summary()


def test_token_usage_is_reported_after_worker_run(settings, store, make_units, fake_openai_client,
                                                  fake_chat_response, sample_response, no_sleep_policy,
                                                  checkpoint_dir):
    client = fake_openai_client(lambda req: fake_chat_response(sample_response(), total_tokens=100))
    pipeline = ExtractionPipeline(settings, store=store, openai_client=client, retry_policy=no_sleep_policy)
    assert pipeline.usage_stats() is None

    pipeline.run(make_units("A", "B"))

    assert pipeline.usage_stats() == {"model": settings.OPENAI_MODEL, "requests": 2, "total_tokens": 200}
    log = (checkpoint_dir / "processing_progress.log").read_text(encoding="utf-8")
    assert "💰 Token usage: 200 tokens over 2 requests" in log
