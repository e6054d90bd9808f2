"""Tests for git state capture, diffing and feature inference."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from mnemo import git
from mnemo.git import GitState


def state(branch="main", commit="aaa1111", message="init", dirty_files=None) -> GitState:
    dirty_files = dirty_files or []
    return GitState(branch, commit, message, bool(dirty_files), dirty_files, "t")


class TestDiff:
    def test_no_previous_is_initial_only(self):
        changes = git.diff(None, state(dirty_files=["a.py"]))
        assert [c.kind for c in changes] == ["initial"]

    def test_identical_states(self):
        assert git.diff(state(), state()) == []

    def test_branch_switch_and_commit_together(self):
        changes = git.diff(state(), state(branch="feat/x", commit="bbb2222", message="feat: x"))
        assert [c.kind for c in changes] == ["branch_switch", "new_commits"]
        assert changes[0].from_ref == "main"
        assert changes[0].to_ref == "feat/x"
        assert "feat: x" in changes[1].description

    def test_clean_to_dirty(self):
        files = [f"f{i}.py" for i in range(7)]
        changes = git.diff(state(), state(dirty_files=files))
        assert [c.kind for c in changes] == ["files_changed"]
        assert changes[0].description.endswith("f4.py...")

    def test_dirty_to_clean_is_silent(self):
        assert git.diff(state(dirty_files=["a.py"]), state()) == []


class TestFeatureInference:
    def test_typed_branch(self):
        ctx = git.infer_feature_context(state(branch="feat/user-auth-flow"))
        assert ctx.type == "feature"
        assert ctx.description == "user auth flow"
        assert ctx.confidence == "high"

    def test_commit_types_on_main(self):
        commits = ["abc123 fix: null cache entry", "def456 fix(queue): scoped rewrite"]
        ctx = git.infer_feature_context(state(message="fix: null cache entry"), commits)
        assert ctx.type == "fix"
        assert ctx.confidence == "medium"

    def test_areas_from_dirty_files(self):
        ctx = git.infer_feature_context(state(dirty_files=["src/api/routes.py", "docs/index.md"]))
        assert "api" in ctx.areas
        assert "docs" in ctx.areas

    def test_format(self):
        text = git.format_feature_context(git.infer_feature_context(state(branch="fix/login")))
        assert "Type: fix" in text


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestCapture:
    def _run(self, repo: Path, *args: str) -> None:
        subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True)

    @pytest.fixture
    def repo(self, tmp_path: Path) -> Path:
        repo = tmp_path / "repo"
        repo.mkdir()
        self._run(repo, "init", "-q")
        self._run(repo, "config", "user.email", "t@example.com")
        self._run(repo, "config", "user.name", "Tester")
        (repo / "a.py").write_text("x = 1\n")
        self._run(repo, "add", "a.py")
        self._run(repo, "-c", "commit.gpgsign=false", "commit", "-q", "-m", "feat: first")
        return repo

    def test_outside_repo(self, tmp_path: Path):
        plain = tmp_path / "plain"
        plain.mkdir()
        assert git.capture(str(plain)) is None

    def test_clean_repo(self, repo: Path):
        captured = git.capture(str(repo))
        assert captured is not None
        assert captured.commit_message == "feat: first"
        assert captured.is_dirty is False

    def test_dirty_files_keep_full_names(self, repo: Path):
        (repo / "a.py").write_text("x = 2\n")
        (repo / "new.py").write_text("")
        captured = git.capture(str(repo))
        assert captured.is_dirty
        assert sorted(captured.dirty_files) == ["a.py", "new.py"]
        assert git.recent_commits(str(repo))[0].endswith("feat: first")

    def test_local_branches(self, repo: Path):
        self._run(repo, "branch", "feat/login")
        branches = git.local_branches(str(repo))
        assert "feat/login" in branches
        assert len(branches) == 2

    def test_dirty_files_capped(self, repo: Path):
        for i in range(25):
            (repo / f"untracked_{i:02d}.py").write_text("")
        captured = git.capture(str(repo))
        assert captured.is_dirty
        assert len(captured.dirty_files) == git.MAX_DIRTY_FILES == 20
