import threading

import pytest

from tinyci import ConfigError, Event, JobStatus, job, pipeline, run_pipeline, sh
from tinyci import runner


def test_push_to_master_with_passing_steps_succeeds(repo, ci_pipeline):
    result = run_pipeline(ci_pipeline(), Event("push", "master"), repo_root=repo)

    assert result.status is JobStatus.SUCCESS
    assert result.exit_code == 0
    assert list(result.jobs) == ["build", "build-client"]
    assert len(result.jobs["build"].steps) == 5
    assert len(result.jobs["build-client"].steps) == 7


def test_failing_backend_unit_tests_fail_the_pipeline(repo, ci_pipeline):
    p = ci_pipeline({"build/unit-tests": "echo 'test result: FAILED'; exit 1"})

    result = run_pipeline(p, Event("pull_request", "master"), repo_root=repo)

    backend = result.jobs["build"]
    assert backend.status is JobStatus.FAILED
    assert [s.step for s in backend.steps] == ["checkout", "install-tooling", "unit-tests"]
    assert "test result: FAILED" in backend.steps[-1].output
    assert result.jobs["build-client"].status is JobStatus.SUCCESS
    assert len(result.jobs["build-client"].steps) == 7
    assert result.status is JobStatus.FAILED
    assert result.exit_code != 0


def test_push_to_other_branch_does_not_run(repo, ci_pipeline):
    marker = repo / "ran"
    p = ci_pipeline({"build/checkout": f"touch {marker}"})

    result = run_pipeline(p, Event("push", "develop"), repo_root=repo)

    assert result is None
    assert not marker.exists()


def test_missing_lint_executable_is_reported_as_invocation_failure(repo, ci_pipeline):
    p = ci_pipeline({"build-client/lint": "missing-linter-xyz --max-warnings 0"})

    result = run_pipeline(p, Event("push", "master"), repo_root=repo)

    client = result.jobs["build-client"]
    lint = client.steps[-1]
    assert client.status is JobStatus.FAILED
    assert lint.step == "lint"
    assert lint.invocation_failed
    assert "missing-linter-xyz" in lint.diagnostic
    assert client.skipped_steps(p.job("build-client")) == ["unit-tests", "build"]
    assert result.jobs["build"].status is JobStatus.SUCCESS
    assert result.status is JobStatus.FAILED


def test_missing_client_directory_fails_only_the_client_job(tmp_path, ci_pipeline):
    result = run_pipeline(ci_pipeline(), Event("push", "master"), repo_root=tmp_path)

    client = result.jobs["build-client"]
    assert client.status is JobStatus.FAILED
    assert [s.step for s in client.steps] == ["checkout", "install-tooling", "install-deps"]
    assert client.steps[-1].invocation_failed
    assert result.jobs["build"].status is JobStatus.SUCCESS


@pytest.mark.parametrize("workers", [1, 2, None])
def test_worker_count_does_not_change_the_outcome(repo, ci_pipeline, workers):
    p = ci_pipeline({"build-client/build": "exit 2"})

    result = run_pipeline(p, Event("push", "master"), repo_root=repo, max_workers=workers)

    assert result.jobs["build"].status is JobStatus.SUCCESS
    assert result.jobs["build-client"].status is JobStatus.FAILED
    assert result.jobs["build-client"].steps[-1].exit_code == 2
    assert result.status is JobStatus.FAILED


def test_jobs_run_concurrently(repo):
    # each job waits for the other one to start; sequential execution would time out
    a_started = repo / "a"
    b_started = repo / "b"
    wait_for = "i=0; while [ ! -f {f} ] && [ $i -lt 50 ]; do sleep 0.1; i=$((i+1)); done; test -f {f}"
    p = pipeline(
        "CI",
        job("a", sh("signal", f"touch {a_started}"), sh("wait", wait_for.format(f=b_started))),
        job("b", sh("signal", f"touch {b_started}"), sh("wait", wait_for.format(f=a_started))),
    )

    result = run_pipeline(p, Event("push", "master"), repo_root=repo)

    assert result.status is JobStatus.SUCCESS


def test_failing_job_does_not_cancel_the_other(repo):
    p = pipeline(
        "CI",
        job("fast-fail", sh("fail", "exit 1")),
        job("slow", sh("sleep", "sleep 0.5"), sh("after", "echo done")),
    )

    result = run_pipeline(p, Event("push", "master"), repo_root=repo)

    assert result.jobs["fast-fail"].status is JobStatus.FAILED
    assert result.jobs["slow"].status is JobStatus.SUCCESS
    assert result.jobs["slow"].steps[-1].output.strip() == "done"


def test_pipeline_timeout_cancels_running_jobs(repo):
    p = pipeline(
        "CI",
        job("quick", sh("ok", "true")),
        job("hung", sh("hang", "sleep 30"), sh("never", "true")),
    )

    result = run_pipeline(p, Event("push", "master"), repo_root=repo, timeout=0.5)

    assert result.jobs["quick"].status is JobStatus.SUCCESS
    hung = result.jobs["hung"]
    assert hung.status is JobStatus.CANCELLED
    assert [s.step for s in hung.steps] == ["hang"]
    assert result.timed_out
    assert result.status is JobStatus.FAILED
    assert result.exit_code == 1


def test_external_cancel_leaves_every_job_terminal(repo):
    cancel = threading.Event()
    p = pipeline(
        "CI",
        job("a", sh("hang", "sleep 30")),
        job("b", sh("hang", "sleep 30")),
    )
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    try:
        result = run_pipeline(p, Event("push", "master"), repo_root=repo, cancel=cancel)
    finally:
        timer.cancel()

    assert all(r.status is JobStatus.CANCELLED for r in result.jobs.values())
    assert result.cancelled
    assert result.exit_code == 130


def test_only_runs_selected_jobs(repo, ci_pipeline):
    result = run_pipeline(ci_pipeline(), Event("push", "master"), repo_root=repo, only=["build"])

    assert result.jobs["build"].status is JobStatus.SUCCESS
    assert result.jobs["build-client"].status is JobStatus.SKIPPED
    assert result.jobs["build-client"].steps == []
    assert result.status is JobStatus.SUCCESS


def test_only_rejects_unknown_jobs(repo, ci_pipeline):
    with pytest.raises(ConfigError):
        run_pipeline(ci_pipeline(), Event("push", "master"), repo_root=repo, only=["deploy"])


def test_unexpected_error_in_a_job_is_captured(repo, ci_pipeline, monkeypatch):
    real_run_step = runner.run_step

    def exploding(step, **kwargs):
        if step.name == "e2e-tests":
            raise RuntimeError("boom")
        return real_run_step(step, **kwargs)

    monkeypatch.setattr(runner, "run_step", exploding)

    result = run_pipeline(ci_pipeline(), Event("push", "master"), repo_root=repo)

    assert result.jobs["build"].status is JobStatus.FAILED
    assert "boom" in result.jobs["build"].error
    assert result.jobs["build-client"].status is JobStatus.SUCCESS
    assert result.status is JobStatus.FAILED


def test_run_does_not_touch_configuration(repo, ci_pipeline):
    p = ci_pipeline({"build/build": "exit 1"})
    before = (p.jobs, p.env, p.trigger)

    run_pipeline(p, Event("push", "master"), repo_root=repo)
    run_pipeline(p, Event("push", "master"), repo_root=repo)

    assert (p.jobs, p.env, p.trigger) == before
