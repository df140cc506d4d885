"""In-memory task ledger plus parsers for the planning and termination replies."""

import json
import re

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class TaskLedger:
    """Pending sub-tasks in order, and the solutions recorded against them."""

    def __init__(self, task_list: list[str], task_summary: str | None = None):
        self.task_list = list(task_list)
        self.task_summary = task_summary
        self.solution_list: list[str] = []
        self.current_task_index = 0

    def current_task(self) -> str | None:
        if self.current_task_index < len(self.task_list):
            return self.task_list[self.current_task_index]
        return None

    def record_solution(self, solution: str) -> bool:
        """Record *solution* for the current task; False once no task is pending."""
        self.solution_list.append(solution)
        self.current_task_index += 1
        return self.current_task_index < len(self.task_list)

    def last_solution(self) -> str | None:
        return self.solution_list[-1] if self.solution_list else None

    def __repr__(self) -> str:
        return (f"TaskLedger(tasks={len(self.task_list)}, done={self.current_task_index}, "
                f"solutions={len(self.solution_list)})")


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

class PlanningReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sub_tasks: list[str] = Field(default_factory=list)
    task_summary: str | None = None
    solution_found: str | None = None


class TerminationReply(BaseModel):
    model_config = ConfigDict(extra="ignore")

    continue_or_terminate: str = ""
    next_move: str | None = None
    key_points: list[str] = Field(default_factory=list)


def extract_json_object(text: str) -> dict | None:
    """Find a JSON object in a model reply, fenced or bare."""
    candidates = []
    fenced = re.search(r"```(?:json)?\s*\n(.*?)```", text, re.DOTALL)
    if fenced:
        candidates.append(fenced.group(1).strip())
    candidates.append(text.strip())
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def parse_planning_sub_tasks(text: str) -> tuple[list[str], str, str | None]:
    """Return (sub_tasks, task_summary, solution_found) from a planning reply.

    A reply without a usable JSON object becomes a single task.
    """
    data = extract_json_object(text)
    try:
        reply = PlanningReply.model_validate(data) if data is not None else None
    except ValidationError:
        reply = None
    if reply is None:
        task = text.strip()
        return ([task] if task else []), task, None

    tasks = [t.strip() for t in reply.sub_tasks if t.strip()]
    summary = (reply.task_summary or "").strip()
    solution = (reply.solution_found or "").strip() or None
    return tasks, summary, solution


def parse_next_move_and_(text: str, fallback_next_move: str | None = None) -> tuple[bool, str | None, list[str]]:
    """Return (terminate, next_move, key_points) from a termination reply."""
    data = extract_json_object(text)
    try:
        reply = TerminationReply.model_validate(data) if data is not None else None
    except ValidationError:
        reply = None
    if reply is None:
        return bool(re.search(r"\bTERMINATE\b", text, re.IGNORECASE)), fallback_next_move, []

    terminate = reply.continue_or_terminate.strip().upper().startswith("TERMINATE")
    next_move = (reply.next_move or "").strip() or fallback_next_move
    key_points = [p.strip() for p in reply.key_points if p.strip()]
    return terminate, next_move, key_points
