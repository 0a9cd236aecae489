"""
Unified diff utilities used by the session reviewer.

Diffs are split at file boundaries so that filtering and summarizing
never cut a file's hunks in half.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DOC_EXTENSIONS = (".md", ".markdown", ".rst", ".txt")

_FILE_HEADER = re.compile(r"^diff --git a/(.+?) b/(.+)$")


@dataclass
class FileDiff:
    path: str
    text: str
    hunks: int = 0
    additions: int = 0
    deletions: int = 0

    def summary_line(self) -> str:
        noun = "hunk" if self.hunks == 1 else "hunks"
        return f"{self.path} ({self.hunks} {noun}, +{self.additions}/-{self.deletions})"


def _count(lines: list[str]) -> tuple[int, int, int]:
    hunks = additions = deletions = 0
    for line in lines:
        if line.startswith("@@"):
            hunks += 1
        elif line.startswith("+") and not line.startswith("+++"):
            additions += 1
        elif line.startswith("-") and not line.startswith("---"):
            deletions += 1
    return hunks, additions, deletions


def split_diff(diff: str) -> list[FileDiff]:
    """Split a unified diff into one FileDiff per `diff --git` section."""
    files: list[FileDiff] = []
    current_path: str | None = None
    current_lines: list[str] = []

    def flush() -> None:
        if current_path is None:
            return
        hunks, adds, dels = _count(current_lines)
        files.append(FileDiff(
            path=current_path,
            text="\n".join(current_lines) + "\n",
            hunks=hunks,
            additions=adds,
            deletions=dels,
        ))

    for line in diff.splitlines():
        match = _FILE_HEADER.match(line)
        if match:
            flush()
            current_path = match.group(2)
            current_lines = [line]
        elif current_path is not None:
            current_lines.append(line)
    flush()
    return files


def is_doc_path(path: str) -> bool:
    lowered = path.lower()
    name = lowered.rsplit("/", 1)[-1]
    return (
        lowered.endswith(DOC_EXTENSIONS)
        or lowered.startswith("docs/")
        or "/docs/" in lowered
        or name.startswith("readme")
    )


@dataclass
class FilteredDiff:
    code: str
    doc_only: bool


def filter_doc_changes(diff: str) -> FilteredDiff:
    """Separate documentation-only file sections from code sections."""
    files = split_diff(diff)
    code_files = [f for f in files if not is_doc_path(f.path)]
    return FilteredDiff(
        code="".join(f.text for f in code_files),
        doc_only=bool(files) and not code_files,
    )


def summarize_files(files: list[FileDiff], max_chars: int) -> str:
    """One summary line per file, capped with an '... and K more files' line."""
    lines: list[str] = []
    used = 0
    for idx, f in enumerate(files):
        line = f.summary_line()
        if used + len(line) + 1 > max_chars and lines:
            lines.append(f"... and {len(files) - idx} more files")
            break
        lines.append(line)
        used += len(line) + 1
    return "\n".join(lines)


def fit_diff_to_budget(diff: str, budget: int) -> tuple[str, bool]:
    """Return (text, summarized).

    The diff is used verbatim when it fits in budget characters;
    otherwise it is replaced by a per-file hunk summary.
    """
    if len(diff) <= budget:
        return diff, False
    files = split_diff(diff)
    if not files:
        return diff[:budget], True
    return summarize_files(files, budget), True
