"""Git state capture, diffing and local feature inference.

Reads repository state directly so that branch switches and commits made
outside the assistant (between sessions) can be reported back as events.
No network access; everything here shells out to the local ``git`` binary.
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

logger = logging.getLogger(__name__)

MAX_DIRTY_FILES = 20
MAX_REPORTED_FILES = 5
GIT_TIMEOUT = 5

ChangeKind = Literal["initial", "branch_switch", "new_commits", "files_changed"]
FeatureType = Literal["feature", "fix", "refactor", "docs", "test", "chore", "unknown"]
Confidence = Literal["high", "medium", "low"]


@dataclass
class GitState:
    branch: str
    commit: str
    commit_message: str
    is_dirty: bool
    dirty_files: list[str] = field(default_factory=list)
    timestamp: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch": self.branch,
            "commit": self.commit,
            "commitMessage": self.commit_message,
            "isDirty": self.is_dirty,
            "dirtyFiles": list(self.dirty_files),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GitState:
        files = data.get("dirtyFiles")
        return cls(
            branch=str(data.get("branch", "unknown")),
            commit=str(data.get("commit", "unknown")),
            commit_message=str(data.get("commitMessage", "")),
            is_dirty=bool(data.get("isDirty", False)),
            dirty_files=[str(f) for f in files] if isinstance(files, list) else [],
            timestamp=str(data.get("timestamp", "")),
        )


@dataclass
class GitStateChange:
    kind: ChangeKind
    description: str
    from_ref: str | None = None
    to_ref: str | None = None


@dataclass
class GitFeatureContext:
    type: FeatureType
    description: str
    keywords: list[str] = field(default_factory=list)
    areas: list[str] = field(default_factory=list)
    confidence: Confidence = "low"


# ── Capture ──────────────────────────────────────────────────


def _git(cwd: str, *args: str) -> str | None:
    """Run a git command; None on any failure."""
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            timeout=GIT_TIMEOUT,
        )
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        logger.debug("git %s failed in %s: %s", " ".join(args), cwd, e)
        return None
    return result.stdout


def is_git_repo(cwd: str) -> bool:
    output = _git(cwd, "rev-parse", "--is-inside-work-tree")
    return output is not None and output.strip() == "true"


def capture(cwd: str) -> GitState | None:
    """Snapshot branch, HEAD and working-tree status; None outside a repo."""
    if not is_git_repo(cwd):
        return None

    branch = (_git(cwd, "rev-parse", "--abbrev-ref", "HEAD") or "").strip() or "unknown"
    commit = (_git(cwd, "rev-parse", "--short", "HEAD") or "").strip() or "unknown"
    commit_message = (_git(cwd, "log", "-1", "--format=%s") or "").strip()

    # Porcelain lines carry a two-char status plus a space ("?? a.py", " M b.py");
    # only trailing newlines may be stripped.
    status = (_git(cwd, "status", "--porcelain") or "").rstrip("\n")
    lines = [line for line in status.split("\n") if line.strip()]
    dirty_files = [line[3:].strip() for line in lines][:MAX_DIRTY_FILES]

    return GitState(
        branch=branch,
        commit=commit,
        commit_message=commit_message,
        is_dirty=bool(lines),
        dirty_files=dirty_files,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


def recent_commits(cwd: str, count: int = 5) -> list[str]:
    output = _git(cwd, "log", f"-{count}", "--oneline")
    if not output:
        return []
    return [line for line in output.split("\n") if line.strip()]


def local_branches(cwd: str) -> list[str]:
    output = _git(cwd, "branch", "--format=%(refname:short)")
    if not output:
        return []
    return [b.strip() for b in output.split("\n") if b.strip()]


# ── Diff ─────────────────────────────────────────────────────


def diff(previous: GitState | None, current: GitState) -> list[GitStateChange]:
    """Changes between two snapshots. Several may fire at once."""
    if previous is None:
        return [
            GitStateChange(
                kind="initial",
                description=f"Session started on branch '{current.branch}' at {current.commit}",
            )
        ]

    changes: list[GitStateChange] = []

    if previous.branch != current.branch:
        changes.append(
            GitStateChange(
                kind="branch_switch",
                description=f"Branch switched from '{previous.branch}' to '{current.branch}'",
                from_ref=previous.branch,
                to_ref=current.branch,
            )
        )

    if previous.commit != current.commit:
        changes.append(
            GitStateChange(
                kind="new_commits",
                description=f"New commit: {current.commit} - {current.commit_message}",
                from_ref=previous.commit,
                to_ref=current.commit,
            )
        )

    # Going dirty -> clean is not worth reporting
    if not previous.is_dirty and current.is_dirty:
        files = ", ".join(current.dirty_files[:MAX_REPORTED_FILES])
        more = "..." if len(current.dirty_files) > MAX_REPORTED_FILES else ""
        changes.append(
            GitStateChange(
                kind="files_changed",
                description=f"Uncommitted changes detected: {files}{more}",
            )
        )

    return changes


# ── Formatting ───────────────────────────────────────────────


def format_git_context(state: GitState, commits: list[str] | None = None) -> str:
    parts = [f"Branch: {state.branch}", f"HEAD: {state.commit} - {state.commit_message}"]
    if state.is_dirty:
        parts.append(f"Status: {len(state.dirty_files)} uncommitted changes")
        if len(state.dirty_files) <= MAX_REPORTED_FILES:
            parts.append(f"  Files: {', '.join(state.dirty_files)}")
    else:
        parts.append("Status: Clean working tree")
    if commits:
        parts.append("Recent commits:")
        parts.extend(f"  {c}" for c in commits[:3])
    return "\n".join(parts)


# ── Feature inference (local heuristics only) ────────────────

_BRANCH_TYPES: list[tuple[re.Pattern[str], FeatureType]] = [
    (re.compile(r"^(feat|feature)[/-]", re.I), "feature"),
    (re.compile(r"^(fix|bugfix|hotfix)[/-]", re.I), "fix"),
    (re.compile(r"^(refactor|refactoring)[/-]", re.I), "refactor"),
    (re.compile(r"^(docs|documentation)[/-]", re.I), "docs"),
    (re.compile(r"^(test|tests|testing)[/-]", re.I), "test"),
    (re.compile(r"^(chore|build|ci)[/-]", re.I), "chore"),
]

_COMMIT_TYPES: list[tuple[re.Pattern[str], FeatureType]] = [
    (re.compile(r"^feat(\(.+\))?:", re.I), "feature"),
    (re.compile(r"^fix(\(.+\))?:", re.I), "fix"),
    (re.compile(r"^refactor(\(.+\))?:", re.I), "refactor"),
    (re.compile(r"^docs(\(.+\))?:", re.I), "docs"),
    (re.compile(r"^test(\(.+\))?:", re.I), "test"),
    (re.compile(r"^(chore|build|ci)(\(.+\))?:", re.I), "chore"),
]

_PATH_AREAS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"/(api|routes|endpoints)/", re.I), "api"),
    (re.compile(r"/(auth|authentication|login)/", re.I), "auth"),
    (re.compile(r"/(ui|components|views|pages)/", re.I), "ui"),
    (re.compile(r"/(hooks)/", re.I), "hooks"),
    (re.compile(r"/(config|settings)/", re.I), "config"),
    (re.compile(r"/(test|tests|__tests__|spec)/", re.I), "testing"),
    (re.compile(r"/(docs|documentation)/", re.I), "docs"),
    (re.compile(r"/(utils|helpers|lib)/", re.I), "utils"),
    (re.compile(r"/(cache|storage)/", re.I), "cache"),
    (re.compile(r"/(cli|commands)/", re.I), "cli"),
    (re.compile(r"\.(md|mdx)$", re.I), "docs"),
    (re.compile(r"(^|/)test_[^/]+\.py$|\.(test|spec)\.(ts|js|tsx|jsx)$", re.I), "testing"),
]

_STOPWORDS = {"the", "and", "for", "with", "add", "update", "fix"}
_TYPE_PREFIX = re.compile(r"^(feat|fix|refactor|docs|test|chore|feature|bugfix|hotfix)[/:-]", re.I)
_FILE_MENTION = re.compile(r"\b[\w/-]+\.(?:py|ts|js|tsx|jsx|json|md)\b")


def _keywords(text: str) -> list[str]:
    cleaned = _TYPE_PREFIX.sub("", text)
    cleaned = re.sub(r"(\(.+\))?:", " ", cleaned)
    words = [w.lower().strip() for w in re.split(r"[-_/\s]+", cleaned)]
    seen: list[str] = []
    for w in words:
        if 2 < len(w) < 20 and w not in _STOPWORDS and w not in seen:
            seen.append(w)
    return seen[:10]


def _parse_branch(branch: str) -> tuple[FeatureType, str]:
    for pattern, kind in _BRANCH_TYPES:
        if pattern.search(branch):
            return kind, re.sub(r"[-_]", " ", pattern.sub("", branch)).strip()
    description = re.sub(r"^(main|master|develop|dev)$", "", branch, flags=re.I)
    description = re.sub(r"[-_]", " ", description).strip()
    return "unknown", description or branch


def _type_from_commits(commits: list[str]) -> FeatureType | None:
    counts: dict[FeatureType, int] = {}
    for commit in commits:
        message = re.sub(r"^[a-f0-9]+\s+", "", commit, flags=re.I)
        for pattern, kind in _COMMIT_TYPES:
            if pattern.search(message):
                counts[kind] = counts.get(kind, 0) + 1
                break
    if not counts:
        return None
    return max(counts, key=lambda k: counts[k])


def _areas(files: list[str]) -> list[str]:
    areas: list[str] = []
    for path in files:
        for pattern, area in _PATH_AREAS:
            if pattern.search(path) and area not in areas:
                areas.append(area)
    return areas[:5]


def infer_feature_context(state: GitState, commits: list[str] | None = None) -> GitFeatureContext:
    """Guess what is being worked on from branch name, commits and dirty files."""
    commits = commits or []
    branch_type, branch_desc = _parse_branch(state.branch)
    commit_type = _type_from_commits(commits)
    inferred: FeatureType = branch_type if branch_type != "unknown" else (commit_type or "unknown")

    keywords: list[str] = []
    for word in _keywords(state.branch) + [w for c in commits for w in _keywords(c)]:
        if word not in keywords:
            keywords.append(word)
    keywords = keywords[:10]

    files = list(state.dirty_files)
    for commit in commits:
        files.extend(_FILE_MENTION.findall(commit))

    description = branch_desc
    if not description and state.commit_message:
        description = re.sub(
            r"^(feat|fix|refactor|docs|test|chore)(\(.+\))?:\s*", "", state.commit_message, flags=re.I
        )[:100]

    confidence: Confidence = "low"
    if branch_type != "unknown" and len(keywords) > 2:
        confidence = "high"
    elif commit_type or keywords:
        confidence = "medium"

    return GitFeatureContext(
        type=inferred,
        description=description or "general development",
        keywords=keywords,
        areas=_areas(files),
        confidence=confidence,
    )


def format_feature_context(context: GitFeatureContext) -> str:
    parts = [f"Type: {context.type}", f"Description: {context.description}"]
    if context.keywords:
        parts.append(f"Keywords: {', '.join(context.keywords)}")
    if context.areas:
        parts.append(f"Areas: {', '.join(context.areas)}")
    parts.append(f"Confidence: {context.confidence}")
    return "\n".join(parts)
