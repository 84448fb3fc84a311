# matrixci_workflow.py
# Build matrix for matrixci itself: one configuration per Python, plus a
# weekly lint pass.
from __future__ import annotations
from matrixci.dsl import config, convert_specifiers, job_config, late, matrix, var, wf


def workflow():
    return wf(
        # Test configurations, one per interpreter
        matrix("python", ["3.10", "3.11", "3.12"]).configs(
            lambda py: config(
                f"py{convert_specifiers(py)}",
                "python -m pip install -e .[test]",
                test_cmds=["python -m pytest -q --junitxml=results.xml"],
                env=[
                    var("LANG", "C.UTF-8"),
                    late("PATH", "./.venv/bin:$PATH"),
                ],
                failed_unstable=0,
                failed_failure=5,
            )
        ),

        # Lint configuration - only runs on Mondays
        config(
            "lint",
            "python -m pip install ruff",
            "ruff check src",
            run_on_days=["mon"],
        ),

        policy=job_config(post_test_summary=True),
    )
