"""Autogen agent: MCP server for the task-solving loop and the Python sandbox.

Exposes the agent as 5 MCP tools. An MCP client launches this over stdio;
every tool call runs synchronously against one shared, read-only agent.

Architecture:
  MCP client --JSON-RPC/stdio--> mcp_server.py --> ImmutableAgent --> {model API, Bing, page fetch}
                                                        |
                                                        +--JSON/stdin--> py_bridge.py (fresh per call)
"""

import asyncio
import json
import os
import sys
import time

from dotenv import load_dotenv
load_dotenv()

from mcp.server.fastmcp import FastMCP

import code_blocks
import llm_client
import py_sandbox
from errors import AgentError, ExecutionError
from immutable_agent import ImmutableAgent

_DOCS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "docs")
_TOOL_DESC_DIR = os.path.join(_DOCS_DIR, "tool-descriptions")


def _load_tool_desc(tool_name: str) -> str:
    """Load tool description from markdown file."""
    with open(os.path.join(_TOOL_DESC_DIR, f"{tool_name}.md"), "r", encoding="utf-8") as f:
        return f.read()


mcp = FastMCP("autogen-agent")

_TOOL_DESCRIPTIONS = {
    "solve_task": _load_tool_desc("solve_task"),
    "execute_python": _load_tool_desc("execute_python"),
    "extract_code_blocks": _load_tool_desc("extract_code_blocks"),
    "simple_reply": _load_tool_desc("simple_reply"),
    "get_status": _load_tool_desc("get_status"),
}

AGENT_NAME = "user_proxy"
OUTPUT_LIMIT = 20_000


# ---------------------------------------------------------------------------
# Singleton agent
# ---------------------------------------------------------------------------

_agent = None


def get_agent() -> ImmutableAgent:
    global _agent
    if _agent is None:
        _agent = ImmutableAgent.simple(AGENT_NAME, "You are a helpful assistant.")
        print(f"[agent] {AGENT_NAME} ready (max_rounds {_agent.max_rounds}, "
              f"max_depth {_agent.max_depth})", file=sys.stderr, flush=True)
    return _agent


def _truncate(text: str) -> str:
    if len(text) > OUTPUT_LIMIT:
        return text[:OUTPUT_LIMIT] + f"\n... ({len(text)} chars total, truncated)"
    return text


# ---------------------------------------------------------------------------
# MCP Tools
# ---------------------------------------------------------------------------

@mcp.tool(description="Solve a task with the plan / act / check agent loop.")
async def solve_task(task: str) -> str:
    agent = get_agent()
    loop = asyncio.get_running_loop()
    usage_before = llm_client.usage.snapshot()
    t_start = time.monotonic()

    try:
        outcome = await loop.run_in_executor(None, agent.run_task, task)
    except AgentError as e:
        print(f"[agent] solve_task failed: {type(e).__name__}: {e}", file=sys.stderr, flush=True)
        return json.dumps({"status": "error", "message": f"{type(e).__name__}: {e}"})

    usage_after = llm_client.usage.snapshot()
    return json.dumps({
        "status": "ok",
        "solution": _truncate(outcome.solution),
        "rounds": outcome.rounds,
        "terminated_by": outcome.terminated_by,
        "sub_tasks": outcome.ledger.task_list,
        "task_summary": outcome.ledger.task_summary,
        "solutions": [_truncate(s) for s in outcome.ledger.solution_list],
        "execution": {
            "elapsed": round(time.monotonic() - t_start, 1),
            "llm_calls": usage_after["calls"] - usage_before["calls"],
            "tokens": usage_after["total_tokens"] - usage_before["total_tokens"],
        },
    })

solve_task.__doc__ = _TOOL_DESCRIPTIONS["solve_task"]


@mcp.tool(description="Run Python code in a fresh interpreter and return its output.")
def execute_python(code: str, capture_stdout: bool = True) -> str:
    try:
        output = py_sandbox.execute(code, capture_stdout=capture_stdout)
    except ExecutionError as e:
        return json.dumps({"status": "error", "error_type": e.kind, "message": str(e)})
    return json.dumps({"status": "ok", "output": _truncate(output)})

execute_python.__doc__ = _TOOL_DESCRIPTIONS["execute_python"]


@mcp.tool(description="Extract fenced (and optionally inline) code blocks from text.")
def extract_code_blocks(text: str, detect_single_line: bool = False) -> str:
    fragments = code_blocks.extract_code_blocks(text, detect_single_line)
    return json.dumps([{"language": f.language, "code": f.code} for f in fragments])

extract_code_blocks.__doc__ = _TOOL_DESCRIPTIONS["extract_code_blocks"]


@mcp.tool(description="Answer a task with one model call, no tools.")
def simple_reply(task: str) -> str:
    try:
        return get_agent().simple_reply(task)
    except AgentError as e:
        return f"[error] {type(e).__name__}: {e}"

simple_reply.__doc__ = _TOOL_DESCRIPTIONS["simple_reply"]


@mcp.tool(description="Get agent configuration and cumulative model usage.")
def get_status() -> str:
    agent = get_agent()
    return json.dumps({
        "agent": agent.name,
        "model": (agent.llm_config or {}).get("model")
                 or os.environ.get("AGENT_MODEL", llm_client.DEFAULT_MODEL),
        "max_recursion_depth": agent.max_depth,
        "max_rounds": agent.max_rounds,
        "usage": llm_client.usage.snapshot(),
    }, indent=2)

get_status.__doc__ = _TOOL_DESCRIPTIONS["get_status"]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    mcp.run()
