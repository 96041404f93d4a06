import json
from pathlib import Path

from typer.testing import CliRunner

from riresume.cli.app import app

runner = CliRunner()


def _run(*args: str) -> dict | list:
    result = runner.invoke(app, list(args))
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_cli_analyze_optimize_and_promote(tmp_path: Path, job_posting, resume_doc) -> None:
    resume_file = tmp_path / "resume.json"
    job_file = tmp_path / "job.json"
    resume_file.write_text(json.dumps(resume_doc), encoding="utf-8")
    job_file.write_text(json.dumps(job_posting), encoding="utf-8")

    user = _run("users", "sync", "--uid", "cli-user", "--email", "cli@example.com")
    assert user["token_balance"] == 110

    analysis = _run("analyses", "analyze", "--uid", "cli-user", "--resume", str(resume_file), "--job", str(job_file))
    assert analysis["reused"] is False

    task = _run("tasks", "create", "--uid", "cli-user", "--type", "optimize_resume", "--target-id", str(analysis["analysis_id"]))
    assert _run("worker", "--once") == {"processed": task["task_id"]}

    promoted = _run("analyses", "promote", "--id", str(analysis["analysis_id"]), "--uid", "cli-user")
    assert promoted["analysis_status"] == "optimized"
    assert _run("tokens", "balance", "--uid", "cli-user")["token_balance"] == 110 - 10 - 15

    exported = _run("analyses", "export", "--id", str(analysis["analysis_id"]), "--output-dir", str(tmp_path))
    assert Path(exported["path"]).exists()


def test_cli_errors_exit_non_zero() -> None:
    result = runner.invoke(app, ["tokens", "balance", "--uid", "nobody"])

    assert result.exit_code == 1


def test_cli_rejects_unknown_task_type() -> None:
    result = runner.invoke(app, ["tasks", "create", "--uid", "u", "--type", "bogus", "--target-id", "1"])

    assert result.exit_code != 0
