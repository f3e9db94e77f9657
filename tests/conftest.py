import textwrap

import pytest

from tinyci import job, on, pipeline, sh
from tinyci.ui import console as console_mod


@pytest.fixture(autouse=True)
def reset_console(monkeypatch):
    """Each test starts with a fresh, non-debug global console."""
    monkeypatch.setattr(console_mod, "_console", None)
    for key in ("TINYCI_WORKFLOW", "TINYCI_EVENT", "TINYCI_BRANCH"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def ci_pipeline():
    """
    Build the two-job CI pipeline with overridable commands.

    Every step defaults to `true`; pass {"job/step": "command"} to change one.
    """

    def _build(overrides=None, client_dir="lib/client"):
        overrides = overrides or {}

        def step(job_name, name, cwd=None):
            return sh(name, overrides.get(f"{job_name}/{name}", "true"), cwd=cwd)

        return pipeline(
            "CI",
            job(
                "build",
                *(step("build", n) for n in ("checkout", "install-tooling", "unit-tests", "build", "e2e-tests")),
            ),
            job(
                "build-client",
                step("build-client", "checkout", cwd="."),
                step("build-client", "install-tooling", cwd="."),
                *(
                    step("build-client", n)
                    for n in ("install-deps", "lint-format-check", "lint", "unit-tests", "build")
                ),
                cwd=client_dir,
            ),
            trigger=on("push", "pull_request", branches=["master"]),
            env={"CARGO_TERM_COLOR": "always"},
        )

    return _build


@pytest.fixture
def repo(tmp_path):
    """A fake repository root with the client subdirectory in place."""
    (tmp_path / "lib" / "client").mkdir(parents=True)
    return tmp_path


@pytest.fixture
def write_workflow(tmp_path):
    def _write(body, name="tinyci_workflow.py"):
        path = tmp_path / name
        path.write_text(textwrap.dedent(body))
        return path

    return _write
