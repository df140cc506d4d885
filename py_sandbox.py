"""Guest execution sandbox: one fresh Python interpreter per call.

Every call to execute() spawns py_bridge.py in a new interpreter process, sends
it a single command and reads back a single response. Nothing the guest
defines can leak into a later call.

There is no timeout or resource limit here; a guest that never
returns blocks the caller.

Architecture:
  execute() --JSON/stdin--> py_bridge.py (fresh interpreter) --JSON/stdout--> execute()
"""

import ast
import json
import os
import subprocess
import sys

from errors import BadOutputError, CompileError, GuestRuntimeError

_BRIDGE_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "py_bridge.py")

CAPTURED_OUTPUT_VAR = "_captured_output"

_CAPTURE_PREAMBLE = (
    "import io as _pybox_io\n"
    "import sys as _pybox_sys\n"
    "_pybox_buffer = _pybox_io.StringIO()\n"
    "_pybox_sys.stdout = _pybox_buffer\n"
)
_CAPTURE_EPILOGUE = f"\n{CAPTURED_OUTPUT_VAR} = _pybox_buffer.getvalue()\n"

_ERRORS_BY_STATUS = {
    "compile_error": CompileError,
    "runtime_error": GuestRuntimeError,
    "bad_output": BadOutputError,
}


def _split_future_imports(code: str) -> tuple[str, str]:
    """Split off the leading docstring and ``from __future__`` lines, which must stay first."""
    try:
        tree = ast.parse(code)
    except SyntaxError:
        return "", code

    end = 0
    for i, node in enumerate(tree.body):
        if isinstance(node, ast.ImportFrom) and node.module == "__future__":
            end = node.end_lineno
        elif (i == 0 and isinstance(node, ast.Expr)
              and isinstance(node.value, ast.Constant) and isinstance(node.value.value, str)):
            continue
        else:
            break
    if not end:
        return "", code

    lines = code.splitlines(keepends=True)
    head = "".join(lines[:end])
    if not head.endswith("\n"):
        head += "\n"
    return head, "".join(lines[end:])


def wrap_for_capture(code: str) -> str:
    """Redirect guest stdout into a buffer and bind its text to CAPTURED_OUTPUT_VAR."""
    head, body = _split_future_imports(code)
    return head + _CAPTURE_PREAMBLE + body + _CAPTURE_EPILOGUE


def _guest_python() -> str:
    return os.environ.get("PYBOX_PYTHON") or sys.executable


def execute(code: str, capture_stdout: bool = True) -> str:
    """Run *code* in a new interpreter and return its textual result.

    capture_stdout=True returns everything the code printed. capture_stdout=False
    returns the value of the program's final expression, which must be a str.

    Raises CompileError, GuestRuntimeError or BadOutputError.
    """
    if capture_stdout:
        source = wrap_for_capture(code)
        cmd = {"op": "exec", "code": source, "result_var": CAPTURED_OUTPUT_VAR}
    else:
        source = code
        cmd = {"op": "eval", "code": source}

    # Reject unparseable code before paying for an interpreter start
    try:
        compile(source, "<embedded>", "exec")
    except SyntaxError as e:
        raise CompileError(str(e)) from e

    mode = "captured" if capture_stdout else "plain"
    print(f"[pybox] running guest code ({mode}, {len(code)} chars)", file=sys.stderr, flush=True)

    env = os.environ.copy()
    env["PYTHONIOENCODING"] = "utf-8"
    proc = subprocess.run(
        [_guest_python(), _BRIDGE_PATH],
        input=json.dumps(cmd),
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        env=env,
    )

    for line in proc.stderr.splitlines():
        if line.strip():
            print(f"[pybox-guest] {line}", file=sys.stderr, flush=True)

    resp = _last_response(proc.stdout)
    if resp is None:
        raise GuestRuntimeError(
            f"guest interpreter exited without a result (exit code {proc.returncode})"
        )

    status = resp.get("status")
    if status == "ok":
        print(f"[pybox] guest finished ({len(resp.get('value', ''))} chars of output)",
              file=sys.stderr, flush=True)
        return resp.get("value", "")

    message = resp.get("message") or "Unknown error"
    print(f"[pybox] guest failed ({status}): {message[:200]}", file=sys.stderr, flush=True)
    raise _ERRORS_BY_STATUS.get(status, GuestRuntimeError)(message)


def _last_response(stdout: str) -> dict | None:
    """The bridge's response is the last non-empty stdout line."""
    for line in reversed(stdout.splitlines()):
        if not line.strip():
            continue
        try:
            resp = json.loads(line)
        except json.JSONDecodeError:
            return None
        return resp if isinstance(resp, dict) else None
    return None


def run_python_capture(code: str) -> str:
    return execute(code, capture_stdout=True)


def run_python(code: str) -> str:
    return execute(code, capture_stdout=False)
