"""
The Reviewer

Classifies a session's diff against the active task's requirements and
proposes a WIP commit message. Anything it cannot parse becomes a
needs_verification verdict.
"""

from __future__ import annotations

from loguru import logger

from tasktrack.agents import AgentContext, BaseAgent
from tasktrack.parsing import extract_json_object
from tasktrack.router import GenerationResult
from tasktrack.state import ReviewVerdict

# Labels some models use for the same buckets
_STATUS_ALIASES = {
    "ontrack": "on_track",
    "on-track": "on_track",
    "critical_failure": "deviation",
    "deviated": "deviation",
    "needs-verification": "needs_verification",
    "blocked": "stuck",
}
_VALID = {"on_track", "deviation", "needs_verification", "stuck"}


def normalize_classification(raw: object) -> str:
    status = str(raw or "").strip().lower().replace(" ", "_")
    status = _STATUS_ALIASES.get(status, status)
    return status if status in _VALID else "needs_verification"


class ReviewAgent(BaseAgent[ReviewVerdict]):
    name = "review"
    tier = "sonnet"
    max_tokens = 1024

    prompt_template = """You are reviewing an AI assistant's work on a coding task. Decide whether the work is on track.

## Active Task: {task_id} {title}
### Requirements
{requirements}

## Changes made{summary_note}
```diff
{diff}
```

## Review Categories
1. **on_track**: the changes serve the task requirements
2. **deviation**: the changes drift from the requirements or touch unrelated code
3. **needs_verification**: work claims completion but nothing shows it was tested
4. **stuck**: the changes go in circles or make no progress on the requirements

## Red Flags
- "Simplifying" the task instead of solving it
- Changes unrelated to the current task
- Deleting or overwriting important files

Respond with ONLY a JSON object:
{{"status": "on_track|deviation|needs_verification|stuck", "message": "Brief explanation for the user", "commitMessage": "Short imperative commit message", "details": "Optional detail"}}"""

    def build_prompt(self, context: AgentContext) -> str:
        requirements = "\n".join(f"- {r}" for r in context.requirements) or "- (none listed)"
        note = " (large diff: per-file summary only)" if context.diff_summarized else ""
        return self.prompt_template.format(
            task_id=context.task_id,
            title=context.title,
            requirements=requirements,
            summary_note=note,
            diff=context.diff,
        )

    def parse_response(self, result: GenerationResult, context: AgentContext) -> ReviewVerdict:
        data = extract_json_object(result.text)
        if data is None:
            raise ValueError("no JSON object in review response")

        verdict = ReviewVerdict(
            classification=normalize_classification(data.get("status")),
            summary=str(data.get("message") or "").strip(),
            generated_commit_message=str(data.get("commitMessage") or data.get("commit_message") or "").strip(),
            details=str(data.get("details") or "").strip(),
        )
        logger.info(f"[REVIEW] {context.task_id}: {verdict.classification}: {verdict.summary[:120]}")
        return verdict

    def fallback(self, context: AgentContext, result: GenerationResult) -> ReviewVerdict:
        reason = "review timed out" if result.timed_out else "review output could not be parsed"
        return ReviewVerdict(
            classification="needs_verification",
            summary=f"Could not review changes: {reason}",
            generated_commit_message="",
            details=result.error or result.text[:500],
        )
