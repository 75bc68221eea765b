"""Integration tests for the collection, review, member, and exam commands."""

import json
import os
from pathlib import Path
from typing import Any

from click.testing import CliRunner

from mistakebook.cli import cli


def _env_with_home(tmp_path: Path) -> dict[str, Any]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("MISTAKEBOOK__")}
    env["HOME"] = str(tmp_path)
    return env


def _image(tmp_path: Path, name: str, content: bytes) -> Path:
    source = tmp_path / "inbox" / name
    source.parent.mkdir(parents=True, exist_ok=True)
    source.write_bytes(content)
    return source


def _invoke_json(runner: CliRunner, env: dict[str, Any], args: list[str]) -> Any:
    result = runner.invoke(cli, [*args, "--json"], env=env)
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def _add(runner: CliRunner, env: dict[str, Any], *paths: Path) -> list[str]:
    payload = _invoke_json(runner, env, ["add", *(str(path) for path in paths)])
    return [entry["id"] for entry in payload["added"]]


def test_add_then_list_tracks_copied_files(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    first = _image(tmp_path, "q1.png", b"first")
    second = _image(tmp_path, "q2.png", b"second")

    result = runner.invoke(
        cli, ["add", str(first), str(second), "--subject", "math", "--tag", "algebra"], env=env
    )

    assert result.exit_code == 0, result.output
    assert "added=2" in result.output
    payload = _invoke_json(runner, env, ["list"])
    items = {item["originalFileName"]: item for item in payload["items"]}
    assert set(items) == {"q1.png", "q2.png"}
    assert items["q1.png"]["subject"] == "math"
    assert items["q1.png"]["tags"] == ["algebra"]
    assert items["q1.png"]["proficiency"] == 0
    assert first.exists()
    images = tmp_path / ".mistakebook" / "members" / "default" / "images"
    assert (images / "q1.png").read_bytes() == b"first"


def test_duplicate_content_is_reported_and_skipped(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    original = _image(tmp_path, "q1.png", b"same bytes")
    copy = _image(tmp_path, "copy.png", b"same bytes")
    (item_id,) = _add(runner, env, original)

    payload = _invoke_json(runner, env, ["add", str(copy)])

    assert payload["added"] == []
    assert payload["duplicates"] == [{"path": str(copy), "existingId": item_id}]
    assert len(_invoke_json(runner, env, ["list"])["items"]) == 1


def test_train_updates_item_and_history(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    (item_id,) = _add(runner, env, _image(tmp_path, "q1.png", b"content"))

    updated = _invoke_json(runner, env, ["train", item_id, "success", "--answer-time", "9000"])

    assert updated["proficiency"] > 0
    assert len(updated["trainingRecords"]) == 1
    assert updated["trainingRecords"][0]["answerTime"] == 9000

    history = _invoke_json(runner, env, ["history"])["history"]
    assert [entry["id"] for entry in history] == [item_id]
    assert history[0]["records"][0]["result"] == "success"


def test_train_unknown_item_reports_json_error(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)

    result = runner.invoke(cli, ["train", "missing", "fail", "--json"], env=env)

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert "missing" in payload["error"]["message"]


def test_due_lists_overdue_mistakes_but_not_frozen_ones(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    overdue, frozen, answer = _add(
        runner,
        env,
        _image(tmp_path, "a.png", b"a"),
        _image(tmp_path, "b.png", b"b"),
        _image(tmp_path, "c.png", b"c"),
    )
    for item_id in (overdue, frozen, answer):
        result = runner.invoke(cli, ["edit", item_id, "--next-date", "2000-01-01"], env=env)
        assert result.exit_code == 0, result.output
    assert runner.invoke(cli, ["freeze", frozen], env=env).exit_code == 0
    assert runner.invoke(cli, ["set-type", answer, "answer"], env=env).exit_code == 0

    assert [item["id"] for item in _invoke_json(runner, env, ["due"])["due"]] == [overdue]
    everything = _invoke_json(runner, env, ["due", "--include-frozen", "--all-types"])["due"]
    assert {item["id"] for item in everything} == {overdue, frozen, answer}


def test_edit_rejects_invalid_next_date(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    (item_id,) = _add(runner, env, _image(tmp_path, "q1.png", b"content"))

    result = runner.invoke(cli, ["edit", item_id, "--next-date", "someday"], env=env)

    assert result.exit_code != 0
    assert "--next-date" in result.output


def test_pair_and_cascade_delete(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    mistake, answer = _add(
        runner, env, _image(tmp_path, "q.png", b"question"), _image(tmp_path, "a.png", b"answer")
    )

    assert runner.invoke(cli, ["pair", mistake, answer], env=env).exit_code == 0
    shown = _invoke_json(runner, env, ["show", mistake])
    assert shown["isPaired"] is True
    assert shown["partners"] == [answer]

    result = runner.invoke(cli, ["delete", mistake, "--cascade"], env=env)

    assert result.exit_code == 0, result.output
    assert _invoke_json(runner, env, ["list"])["items"] == []


def test_band_policy_can_be_selected(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    (item_id,) = _add(runner, env, _image(tmp_path, "q1.png", b"content"))

    result = runner.invoke(cli, ["schedule", "policy", "band"], env=env)
    assert result.exit_code == 0, result.output
    assert _invoke_json(runner, env, ["schedule", "show"])["policy"] == "band"

    updated = _invoke_json(runner, env, ["train", item_id, "success"])

    assert updated["proficiency"] == 10
    assert updated["trainingInterval"] == 3

    assert runner.invoke(cli, ["schedule", "reset"], env=env).exit_code == 0
    assert _invoke_json(runner, env, ["schedule", "show"])["policy"] == "deviation"


def test_undecodable_schedule_file_falls_back_to_defaults(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    schedule = tmp_path / ".mistakebook" / "training.json"
    schedule.parent.mkdir(parents=True)
    schedule.write_bytes(b"\xff\xfe{}")

    payload = _invoke_json(runner, env, ["schedule", "show"])

    assert payload["policy"] == "deviation"


def test_schedule_import_rejects_invalid_configuration(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    bad = tmp_path / "schedule.json"
    bad.write_text(json.dumps({"policy": "lottery"}), encoding="utf-8")

    result = runner.invoke(cli, ["schedule", "import", str(bad)], env=env)

    assert result.exit_code != 0
    assert _invoke_json(runner, env, ["schedule", "show"])["policy"] == "deviation"


def test_members_keep_separate_collections(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    _add(runner, env, _image(tmp_path, "q1.png", b"content"))

    assert runner.invoke(cli, ["member", "create", "sam"], env=env).exit_code == 0
    assert runner.invoke(cli, ["member", "switch", "sam"], env=env).exit_code == 0
    assert _invoke_json(runner, env, ["list"])["items"] == []

    members = _invoke_json(runner, env, ["member", "list"])["members"]
    summary = {entry["name"]: (entry["items"], entry["current"]) for entry in members}
    assert summary == {"default": (1, False), "sam": (0, True)}

    result = runner.invoke(cli, ["member", "delete", "sam"], env=env)
    assert result.exit_code != 0
    assert "in use" in result.output

    assert runner.invoke(cli, ["member", "switch", "default"], env=env).exit_code == 0
    assert runner.invoke(cli, ["member", "delete", "sam"], env=env).exit_code == 0
    assert not (tmp_path / ".mistakebook" / "members" / "sam").exists()


def test_member_create_rejects_duplicates(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)

    result = runner.invoke(cli, ["member", "create", "default"], env=env)

    assert result.exit_code != 0
    assert "already exists" in result.output


def test_exam_flow_records_reviews(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    first, second = _add(
        runner, env, _image(tmp_path, "a.png", b"a"), _image(tmp_path, "b.png", b"b")
    )

    exam = _invoke_json(runner, env, ["exam", "start", "--all"])
    exam_id = exam["id"]
    assert {entry["fileId"] for entry in exam["items"]} == {first, second}
    assert exam["totalTime"] == 600

    result = runner.invoke(cli, ["exam", "answer", exam_id, "0", "--time-spent", "40"], env=env)
    assert result.exit_code == 0, result.output
    result = runner.invoke(cli, ["exam", "grade", exam_id, "0", "success"], env=env)
    assert result.exit_code != 0
    assert "Complete exam" in result.output

    assert runner.invoke(cli, ["exam", "complete", exam_id], env=env).exit_code == 0
    graded_id = exam["items"][0]["fileId"]
    result = runner.invoke(cli, ["exam", "grade", exam_id, "0", "fail"], env=env)
    assert result.exit_code == 0, result.output

    record = _invoke_json(runner, env, ["exam", "show", exam_id])
    assert record["status"] == "completed"
    assert record["items"][0]["result"] == "fail"
    assert record["items"][0]["timeSpent"] == 40
    assert record["gradingIndex"] == 1
    assert record["isGrading"] is True

    graded = _invoke_json(runner, env, ["show", graded_id])
    assert graded["trainingRecords"][0]["result"] == "fail"
    assert graded["trainingRecords"][0]["answerTime"] == 40_000

    assert runner.invoke(cli, ["exam", "delete", exam_id], env=env).exit_code == 0
    assert _invoke_json(runner, env, ["exam", "list"])["exams"] == []


def test_exam_start_without_due_items_fails(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    _add(runner, env, _image(tmp_path, "a.png", b"a"))

    result = runner.invoke(cli, ["exam", "start"], env=env)

    assert result.exit_code != 0
    assert "No items available" in result.output


def test_migrate_moves_collection_and_remembers_location(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    (item_id,) = _add(runner, env, _image(tmp_path, "q1.png", b"content"))
    destination = tmp_path / "elsewhere"

    outcome = _invoke_json(runner, env, ["migrate", str(destination)])

    assert outcome["success"] is True
    assert outcome["migrated"] == 1
    assert (destination / "q1.png").read_bytes() == b"content"
    shown = _invoke_json(runner, env, ["show", item_id])
    assert Path(shown["path"]) == destination.resolve() / "q1.png"


def test_validate_prunes_missing_files(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    kept, lost = _add(
        runner, env, _image(tmp_path, "a.png", b"a"), _image(tmp_path, "b.png", b"b")
    )
    (tmp_path / ".mistakebook" / "members" / "default" / "images" / "b.png").unlink()

    assert _invoke_json(runner, env, ["validate"])["pruned"] == [lost]
    assert [item["id"] for item in _invoke_json(runner, env, ["list"])["items"]] == [kept]
