"""Tests for CLI commands."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from click.testing import CliRunner

from gitstacks.cli import cli
from gitstacks.models import Stack, Target
from gitstacks.store import VirtualBranchesHandle
from gitstacks.timeutil import format_relative_time, from_ms, parse_time_reference, to_ms


runner = CliRunner()


def test_parse_time_reference_hours():
    """Test parsing '1 hour ago'."""
    now = datetime.now(timezone.utc)
    result = parse_time_reference("1 hour ago")
    assert (now - result).total_seconds() < 3700  # ~1 hour with some slack


def test_parse_time_reference_months():
    now = datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc)
    assert parse_time_reference("1 month ago", now=now) == datetime(2025, 2, 28, 12, 0, tzinfo=timezone.utc)


def test_parse_time_reference_today():
    """Test parsing 'today'."""
    result = parse_time_reference("today")
    now = datetime.now(timezone.utc)
    assert result.date() == now.date()
    assert result.hour == 0 and result.minute == 0


def test_parse_time_reference_iso_is_utc():
    result = parse_time_reference("2025-01-15")
    assert result == datetime(2025, 1, 15, tzinfo=timezone.utc)


def test_parse_time_reference_garbage():
    with pytest.raises(ValueError):
        parse_time_reference("not a time at all")


def test_format_relative_time():
    now = datetime(2025, 1, 15, tzinfo=timezone.utc)
    assert format_relative_time(now - timedelta(seconds=5), now=now) == "5 seconds ago"
    assert format_relative_time(now - timedelta(hours=1), now=now) == "1 hour ago"
    assert format_relative_time(now - timedelta(days=3), now=now) == "3 days ago"
    assert format_relative_time(now + timedelta(days=1), now=now) == "in the future"


def test_ms_conversion_roundtrip():
    assert to_ms(from_ms(1_700_000_000_123)) == 1_700_000_000_123


# --- Commands against a real repository ---


@pytest.fixture
def workdir(git_repo):
    repo, shas = git_repo
    return Path(repo.working_tree_dir), shas


@pytest.fixture
def store(git_repo):
    repo, _ = git_repo
    return VirtualBranchesHandle(Path(repo.git_dir) / "gitstacks")


@pytest.fixture
def targeted(workdir, store):
    path, shas = workdir
    store.set_default_target(Target(branch_name="main", remote_name="origin", sha=shas["base"]))
    return path, shas


def invoke(path, *args):
    return runner.invoke(cli, ["--repo", str(path), *args])


def test_list_without_target_fails(workdir):
    path, _ = workdir
    result = invoke(path, "list")
    assert result.exit_code == 1
    assert "no default target" in result.output


def test_not_a_repository(temp_dir):
    result = invoke(temp_dir, "stacks")
    assert result.exit_code != 0


def test_target_set_and_show(workdir, store):
    path, shas = workdir
    result = invoke(path, "target", "set", "origin/main")
    assert result.exit_code == 0
    assert shas["base"][:7] in result.output

    target = store.get_default_target()
    assert target.branch_name == "main"
    assert target.remote_name == "origin"
    assert target.remote_url == "https://example.com/project.git"
    assert target.sha == shas["base"]

    result = invoke(path, "target", "show")
    assert result.exit_code == 0
    assert "origin/main" in result.output


def test_target_set_with_sha(workdir, store):
    path, shas = workdir
    result = invoke(path, "target", "set", "origin/feature", "--sha", shas["f1"])
    assert result.exit_code == 0
    assert store.get_default_target().sha == shas["f1"]


def test_target_set_rejects_unknown_remote(workdir):
    path, _ = workdir
    result = invoke(path, "target", "set", "nowhere/main")
    assert result.exit_code == 2


def test_target_set_rejects_missing_branch(workdir):
    path, _ = workdir
    result = invoke(path, "target", "set", "origin/nope")
    assert result.exit_code == 2


def test_target_show_without_target(workdir):
    path, _ = workdir
    assert invoke(path, "target", "show").exit_code == 1


def test_list_json(targeted):
    path, _ = targeted
    result = invoke(path, "list", "--json")
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert [b["name"] for b in data] == ["feature"]
    assert data[0]["remotes"] == ["origin"]
    assert data[0]["hasLocal"] is True
    assert data[0]["virtualBranch"] is None
    assert "head" not in data[0]


def test_list_table(targeted):
    path, _ = targeted
    result = invoke(path, "list")
    assert result.exit_code == 0
    assert "feature" in result.output


def test_list_filters(targeted, store):
    path, shas = targeted
    store.set_branch(Stack(id="s1", name="lane", head=shas["f1"]))

    applied = json.loads(invoke(path, "list", "--applied", "--json").stdout)
    assert [b["name"] for b in applied] == ["lane"]

    not_applied = json.loads(invoke(path, "list", "--not-applied", "--json").stdout)
    assert [b["name"] for b in not_applied] == ["feature"]

    named = json.loads(invoke(path, "list", "-n", "lane", "--json").stdout)
    assert [b["virtualBranch"]["id"] for b in named] == ["s1"]


def test_list_since(targeted):
    path, _ = targeted
    recent = json.loads(invoke(path, "list", "--since", "1 day ago", "--json").stdout)
    assert [b["name"] for b in recent] == ["feature"]

    future = json.loads(invoke(path, "list", "--since", "2999-01-01", "--json").stdout)
    assert future == []


def test_list_since_invalid(targeted):
    path, _ = targeted
    result = invoke(path, "list", "--since", "whenever")
    assert result.exit_code == 1


def test_details_json(targeted):
    path, _ = targeted
    result = invoke(path, "details", "feature", "--json")
    assert result.exit_code == 0
    [details] = json.loads(result.stdout)
    assert details["linesAdded"] == 3
    assert details["numberOfFiles"] == 2
    assert details["numberOfCommits"] == 2
    assert [a["name"] for a in details["authors"]] == ["Bob", "Carol"]


def test_details_text(targeted):
    path, _ = targeted
    result = invoke(path, "details", "feature")
    assert result.exit_code == 0
    assert "+3" in result.output


def test_stacks_empty(workdir):
    path, _ = workdir
    result = invoke(path, "stacks")
    assert result.exit_code == 0
    assert "No virtual branches" in result.output


def test_stacks_and_reorder(workdir, store):
    path, shas = workdir
    store.set_branch(Stack(id="a", name="alpha", head=shas["f1"], order=4))
    store.set_branch(Stack(id="b", name="beta", head=shas["f2"], order=9))

    result = invoke(path, "stacks")
    assert result.exit_code == 0
    assert "alpha" in result.output and "beta" in result.output

    result = invoke(path, "reorder")
    assert result.exit_code == 0
    assert [(s.id, s.order) for s in store.list_all_branches()] == [("a", 0), ("b", 1)]


def test_gc(targeted, store):
    path, shas = targeted
    store.set_branch(Stack(id="empty", name="empty", head=shas["base"], in_workspace=False))
    store.set_branch(Stack(id="work", name="work", head=shas["f2"], in_workspace=False))

    result = invoke(path, "gc")
    assert result.exit_code == 0
    assert "empty" in result.output
    assert [s.id for s in store.list_all_branches()] == ["work"]

    result = invoke(path, "gc")
    assert "Nothing to collect" in result.output


def test_gc_without_target(workdir):
    path, _ = workdir
    assert invoke(path, "gc").exit_code == 1


def test_state_dir_override(targeted, temp_dir):
    path, _ = targeted
    other = temp_dir / "elsewhere"
    result = runner.invoke(cli, ["--repo", str(path), "--state-dir", str(other), "list"])
    assert result.exit_code == 1
    assert "no default target" in result.output


def test_repo_from_environment(targeted):
    path, _ = targeted
    result = runner.invoke(cli, ["list", "--json"], env={"GITSTACKS_PATH": str(path)})
    assert result.exit_code == 0
    assert [b["name"] for b in json.loads(result.stdout)] == ["feature"]
