# tinyci_workflow.py
# CI for the backend (unit tests, build, e2e tests) and the client in
# lib/client (deps, format check, lint, unit tests, build).
# Runs on pushes and pull requests targeting master.
from __future__ import annotations

from tinyci import job, on, pipeline, sh


def workflow():
    return pipeline(
        "CI",
        job(
            "build",
            sh("checkout", "git rev-parse --verify HEAD"),
            sh("install-tooling", "yarn --version"),
            sh("unit-tests", "./do.sh test -- --nocapture"),
            sh("build", "./do.sh build"),
            sh("e2e-tests", "./do.sh e2e-test --silent"),
        ),
        job(
            "build-client",
            sh("checkout", "git rev-parse --verify HEAD", cwd="."),
            sh("install-tooling", "yarn --version", cwd="."),
            sh("install-deps", "yarn install"),
            sh("lint-format-check", "yarn prettier -c"),
            sh("lint", "yarn lint"),
            sh("unit-tests", "yarn test-unit"),
            sh("build", "yarn build"),
            cwd="lib/client",
        ),
        trigger=on("push", "pull_request", branches=["master"]),
        env={"CARGO_TERM_COLOR": "always"},
    )
