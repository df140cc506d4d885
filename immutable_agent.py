"""The agent: action parsing, capability dispatch and the planning/iteration loop.

Flow of one task:

  run_task --> planning --(single-shot solution)--> done
                  |
                  v
        next_step_by_toolcall --> parse_action --> exec_toolcall --> {intrinsic | search | python}
                  |                                                        |
                  +<------------------- step result (carry-over) <---------+
                  |
                  v
            is_termination --> record_solution --> next round

An ImmutableAgent never changes after construction; every piece of per-task
state (the ledger, the carry-over) lives in run_task's frame. The collaborators
(model call, search, page fetch, sandbox) are plain callables on the agent so
they can be swapped without touching the loop.
"""

import enum
import json
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable

import llm_client
import prompts
import py_sandbox
import web_tools
from code_blocks import extract_code, extract_code_blocks
from errors import AgentError, ExecutionError, UnexpectedVariantError
from llm_client import Content, Message, ToolCall
from task_ledger import TaskLedger, parse_next_move_and_, parse_planning_sub_tasks

MAX_RECURSION_DEPTH = 3
DEFAULT_MAX_ROUNDS = 10

STEP_MAX_TOKENS = 1000
PLANNING_MAX_TOKENS = 500
TERMINATION_MAX_TOKENS = 300

PAGE_TEXT_LIMIT = 6_000

INTRINSIC_FAILED = "failed in use_intrinsic_knowledge"
SEARCH_FAILED = "search failed to get useful data"
SEARCH_MISSING_QUERY = "failed in search_with_bing"
CODE_MISSING = "failed in code_with_python"
NO_CODE_FOUND = "no python code found in model reply"
NO_USEFUL_RESULT = "tool_call didn't create useful result"
NO_TASK_FOUND = "no task found"
NO_FINAL_RESULT = "no final result"

# Keys of llm_config forwarded to the model call
_LLM_CONFIG_KEYS = ("model", "temperature")


class Capability(str, enum.Enum):
    USE_INTRINSIC_KNOWLEDGE = "use_intrinsic_knowledge"
    SEARCH_WITH_BING = "search_with_bing"
    CODE_WITH_PYTHON = "code_with_python"

    @classmethod
    def from_name(cls, name: str) -> "Capability | None":
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass(frozen=True)
class PlainText:
    """The model answered in prose instead of calling a tool."""

    text: str


def parse_action(content: Content) -> ToolCall | PlainText:
    if isinstance(content, ToolCall):
        return content
    return PlainText(content.text)


def _text_instead_of_toolcall(text: str) -> str:
    return f"attempt to run tool_call failed, returning text result: {text} "


def _execution_failed(exc: ExecutionError) -> str:
    return f"code execution failed: {exc.kind} error: {exc}"


@dataclass
class TaskOutcome:
    solution: str
    ledger: TaskLedger
    rounds: int
    terminated_by: str


@dataclass(frozen=True)
class ImmutableAgent:
    name: str
    system_prompt: str
    llm_config: dict[str, Any] | None = None
    tools_map_meta: str = ""
    description: str = ""
    chat: Callable[..., Message] = field(default=llm_client.chat, repr=False, compare=False)
    search: Callable[[str], list[tuple[str, str]]] = field(
        default=web_tools.search_with_bing, repr=False, compare=False)
    fetch_text: Callable[[str], str] = field(
        default=web_tools.get_webpage_text, repr=False, compare=False)
    sandbox: Callable[[str], str] = field(
        default=py_sandbox.run_python_capture, repr=False, compare=False)
    formatter: Callable[[str, str], str] = field(
        default=prompts.format_carry_over, repr=False, compare=False)
    max_depth: int = MAX_RECURSION_DEPTH
    max_rounds: int = field(
        default_factory=lambda: int(os.environ.get("AGENT_MAX_ROUNDS", str(DEFAULT_MAX_ROUNDS))))

    @classmethod
    def simple(cls, name: str, system_prompt: str, **kwargs) -> "ImmutableAgent":
        return cls(name=name, system_prompt=system_prompt, **kwargs)

    def _chat(self, system_prompt: str, user_prompt: str, max_tokens: int) -> Message:
        overrides = {k: v for k, v in (self.llm_config or {}).items() if k in _LLM_CONFIG_KEYS}
        return self.chat(system_prompt, user_prompt, max_tokens, **overrides)

    # -----------------------------------------------------------------------
    # Tool calling
    # -----------------------------------------------------------------------

    def next_step_out_toolcall(self, input: str) -> ToolCall:
        """Ask the model to pick a tool for *input*; a prose reply is an error here."""
        output = self._chat(prompts.NEXT_STEP_BY_TOOLCALL, input, STEP_MAX_TOKENS)
        action = parse_action(output.content)
        if isinstance(action, PlainText):
            raise UnexpectedVariantError(_text_instead_of_toolcall(action.text))
        return action

    def next_step_by_toolcall(self, carry_over: str | None, input: str, depth: int = 0) -> str:
        """One dispatch round: the model picks a tool, the tool's text is the step result."""
        output = self._chat(prompts.NEXT_STEP_BY_TOOLCALL, input, STEP_MAX_TOKENS)
        action = parse_action(output.content)
        if isinstance(action, PlainText):
            print(f"[agent] model replied without a tool call ({len(action.text)} chars)",
                  file=sys.stderr, flush=True)
            return _text_instead_of_toolcall(action.text)
        return self.exec_toolcall(carry_over, action, depth)

    def next_step_by_toolcall_nested(self, carry_over: str | None, input: str, depth: int = 0) -> str:
        try:
            call = self.next_step_out_toolcall(input)
        except UnexpectedVariantError as e:
            raise UnexpectedVariantError("nested toolcall failed") from e
        return self.exec_toolcall(carry_over, call, depth)

    def exec_toolcall(self, carry_over: str | None, call: ToolCall, depth: int = 0) -> str:
        """Route *call* to its capability and return the result as text.

        Unknown tools and missing arguments come back as sentinel strings. Only a
        page-fetch failure after a successful search propagates.

        *depth* counts nested dispatches. use_intrinsic_knowledge hands off to
        iterate_next_step at depth + 1, and that step never dispatches a tool, so
        the agent's own loop stays at depth 0 or 1. The max_depth refusal only
        triggers for callers that re-enter exec_toolcall with a larger depth.
        """
        if depth > self.max_depth:
            print(f"[agent] refusing {call.name}: depth {depth} > {self.max_depth}",
                  file=sys.stderr, flush=True)
            return f"[error] recursion depth limit ({self.max_depth}) exceeded"

        capability = Capability.from_name(call.name)
        args = call.args()
        print(f"[agent] dispatching {call.name} (depth {depth}, args {sorted(args)})",
              file=sys.stderr, flush=True)

        if capability is Capability.USE_INTRINSIC_KNOWLEDGE:
            return self._use_intrinsic_knowledge(carry_over, args.get("task"), depth)
        elif capability is Capability.SEARCH_WITH_BING:
            return self._search_with_bing(args.get("query"))
        elif capability is Capability.CODE_WITH_PYTHON:
            return self._code_with_python(args.get("code"))
        return NO_USEFUL_RESULT

    def _use_intrinsic_knowledge(self, carry_over: str | None, task: Any, depth: int) -> str:
        if not isinstance(task, str) or not task.strip():
            return INTRINSIC_FAILED
        try:
            return self.iterate_next_step(carry_over, task, depth + 1)
        except AgentError as e:
            print(f"[agent] use_intrinsic_knowledge failed: {type(e).__name__}: {e}",
                  file=sys.stderr, flush=True)
            return INTRINSIC_FAILED

    def _search_with_bing(self, query: Any) -> str:
        if not isinstance(query, str) or not query.strip():
            return SEARCH_MISSING_QUERY
        try:
            results = self.search(query)
        except Exception as e:
            print(f"[agent] search failed: {type(e).__name__}: {str(e)[:200]}",
                  file=sys.stderr, flush=True)
            return SEARCH_FAILED
        if not results:
            return SEARCH_FAILED
        url = results[0][0]
        return self.fetch_text(url)[:PAGE_TEXT_LIMIT]

    def _code_with_python(self, code: Any) -> str:
        if not isinstance(code, str) or not code.strip():
            return CODE_MISSING
        program = extract_code(code)
        if not program:
            # Blocks tagged with another language never reach the Python guest
            untagged = [f.code for f in extract_code_blocks(code) if f.language is None]
            program = "\n".join(untagged) if untagged else code.strip()
        return self._run_guest(program)

    def _run_guest(self, program: str) -> str:
        try:
            return self.sandbox(program)
        except ExecutionError as e:
            return _execution_failed(e)

    # -----------------------------------------------------------------------
    # Reasoning steps
    # -----------------------------------------------------------------------

    def iterate_next_step(self, carry_over: str | None, input: str, depth: int = 0) -> str:
        """Single reasoning step: answer *input* in prose, building on *carry_over*."""
        if carry_over is not None:
            user_prompt = self.formatter(carry_over, input)
            system_prompt = prompts.ITERATE_NEXT_STEP
        else:
            user_prompt = input
            system_prompt = prompts.TASK_SOLVING_EXPERT

        print(f"[agent] reasoning step (depth {depth}, carry-over "
              f"{'yes' if carry_over is not None else 'no'}, {len(user_prompt)} chars)",
              file=sys.stderr, flush=True)
        output = self._chat(system_prompt, user_prompt, STEP_MAX_TOKENS)
        if isinstance(output.content, ToolCall):
            raise UnexpectedVariantError("entered tool_call arm incorrectly")
        return output.content.text

    def simple_reply(self, input: str) -> str:
        user_prompt = f"Here is the task for you: {json.dumps(input)}"
        return self._chat(self.system_prompt, user_prompt, STEP_MAX_TOKENS).text()

    def code_with_python(self, task: str) -> str:
        """Have the model write Python for *task*, then run it and return what it printed."""
        output = self._chat(prompts.CODE_WITH_PYTHON, task, STEP_MAX_TOKENS)
        code = extract_code(output.text())
        if not code:
            return NO_CODE_FOUND
        return self._run_guest(code)

    # -----------------------------------------------------------------------
    # Planning, termination and the loop
    # -----------------------------------------------------------------------

    def planning(self, input: str) -> tuple[TaskLedger, str | None]:
        output = self._chat(prompts.NEXT_STEP_PLANNING, input, PLANNING_MAX_TOKENS)
        task_list, task_summary, solution_found = parse_planning_sub_tasks(output.text())
        print(f"[agent] planned {len(task_list)} sub-task(s); summary: {task_summary[:80]!r}",
              file=sys.stderr, flush=True)
        return TaskLedger(task_list, task_summary), solution_found

    def is_termination(self, current_text_result: str, instruction: str) -> tuple[bool, str]:
        """Ask the model whether *current_text_result* completes *instruction*."""
        user_prompt = (
            f"Given the task: {json.dumps(instruction)}, examine current result: "
            f"{current_text_result}, please decide whether the task is done or not"
        )
        raw_reply = self._chat(prompts.IS_TERMINATION_SYSTEM_PROMPT, user_prompt, TERMINATION_MAX_TOKENS)
        terminate, _, key_points = parse_next_move_and_(raw_reply.content_to_string())
        print(f"[agent] termination check: {'TERMINATE' if terminate else 'CONTINUE'}",
              file=sys.stderr, flush=True)
        return terminate, ",".join(key_points)

    def run_task(self, instruction: str) -> TaskOutcome:
        """Plan *instruction*, then iterate over the sub-tasks until done."""
        ledger, solution = self.planning(instruction)
        if not ledger.task_list and solution is not None:
            ledger.record_solution(solution)
            return TaskOutcome(solution, ledger, rounds=0, terminated_by="planning")
        if not ledger.task_list:
            ledger = TaskLedger([instruction], ledger.task_summary)

        carry_over = None
        rounds = 0
        terminated_by = "round_limit"
        while rounds < self.max_rounds:
            rounds += 1
            task = ledger.current_task() or NO_TASK_FOUND
            print(f"[agent] round {rounds}: {task[:80]!r}", file=sys.stderr, flush=True)

            result = self.next_step_by_toolcall(carry_over, task)
            carry_over = result

            done, key_points = self.is_termination(result, instruction)
            if done:
                ledger.record_solution(result)
                terminated_by = "termination_check"
                break
            if key_points:
                print(f"[agent] key points so far: {key_points[:200]}", file=sys.stderr, flush=True)
            if not ledger.record_solution(result):
                terminated_by = "ledger_exhausted"
                break

        return TaskOutcome(ledger.last_solution() or NO_FINAL_RESULT, ledger, rounds, terminated_by)
