"""Prompt texts, loaded from docs/prompts/ at import time."""

import os

_PROMPTS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "docs", "prompts")


def _load_prompt(name: str) -> str:
    with open(os.path.join(_PROMPTS_DIR, f"{name}.md"), "r", encoding="utf-8") as f:
        return f.read().strip()


NEXT_STEP_PLANNING = _load_prompt("next_step_planning")
NEXT_STEP_BY_TOOLCALL = _load_prompt("next_step_by_toolcall")
ITERATE_NEXT_STEP = _load_prompt("iterate_next_step")
TASK_SOLVING_EXPERT = _load_prompt("task_solving_expert")
IS_TERMINATION_SYSTEM_PROMPT = _load_prompt("is_termination")
CODE_WITH_PYTHON = _load_prompt("code_with_python")
ITERATE_NEXT_STEP_TEMPLATE = _load_prompt("carry_over_template")


def format_carry_over(carry_over: str, task: str) -> str:
    """Default formatter combining the previous step's result with the next task."""
    return ITERATE_NEXT_STEP_TEMPLATE.format(carry_over=carry_over, task=task)
