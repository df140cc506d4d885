#!/usr/bin/env python3
"""Guest-side runner for the Python sandbox.

Started once per execution by py_sandbox.py, runs exactly one command and
exits, so no interpreter state survives between executions.

Reads one JSON command from stdin, writes one JSON response as the last line
of the real stdout.

Protocol:
  {"op": "exec", "code": "...", "result_var": "..."}  -> {"status": "ok", "value": "..."}
  {"op": "eval", "code": "..."}                         -> {"status": "ok", "value": "..."}
  failures                                              -> {"status": "compile_error" | "runtime_error" | "bad_output",
                                                            "message": "..."}
"""

import ast
import builtins
import json
import sys


def main():
    raw = sys.stdin.read()
    try:
        cmd = json.loads(raw)
    except json.JSONDecodeError as e:
        respond({"status": "runtime_error", "message": f"Invalid JSON: {e}"})
        return

    op = cmd.get("op")
    code = cmd.get("code", "")
    scope = {"__builtins__": builtins, "__name__": "__guest__"}

    if op == "exec":
        respond(run_captured(code, scope, cmd.get("result_var", "_captured_output")))
    elif op == "eval":
        # Plain mode has no capture buffer: keep the protocol channel clean.
        sys.stdout = sys.stderr
        respond(run_plain(code, scope))
    else:
        respond({"status": "runtime_error", "message": f"Unknown op: {op}"})


def run_captured(code, scope, result_var):
    try:
        code_obj = compile(code, "<embedded>", "exec")
    except SyntaxError as e:
        return {"status": "compile_error", "message": str(e)}
    try:
        exec(code_obj, scope)
    except (Exception, SystemExit) as e:
        return {"status": "runtime_error", "message": error_message(e)}

    if result_var not in scope:
        return {"status": "bad_output", "message": f"error getting {result_var}"}
    value = scope[result_var]
    if not isinstance(value, str):
        return {"status": "bad_output", "message": f"{result_var} is not a string"}
    return {"status": "ok", "value": value}


def run_plain(code, scope):
    """Run *code* as a program; a trailing expression statement is the result."""
    try:
        tree = ast.parse(code, "<embedded>", "exec")
        tail = None
        if tree.body and isinstance(tree.body[-1], ast.Expr):
            tail = ast.Expression(tree.body.pop().value)
        body_obj = compile(tree, "<embedded>", "exec")
        tail_obj = compile(tail, "<embedded>", "eval") if tail is not None else None
    except SyntaxError as e:
        return {"status": "compile_error", "message": str(e)}

    try:
        exec(body_obj, scope)
        value = eval(tail_obj, scope) if tail_obj is not None else None
    except (Exception, SystemExit) as e:
        return {"status": "runtime_error", "message": error_message(e)}

    if not isinstance(value, str):
        return {"status": "bad_output", "message": f"result is not a string (got {type(value).__name__})"}
    return {"status": "ok", "value": value}


def error_message(exc):
    """Message carried by the exception's first argument."""
    if not exc.args:
        return "No error message available"
    first = exc.args[0]
    if isinstance(first, str) and first:
        return first
    return "Unknown error"


def respond(obj):
    """Write a JSON response to stdout (the communication channel)."""
    # Guest code may have replaced sys.stdout; always use the real one
    sys.__stdout__.write("\n" + json.dumps(obj) + "\n")
    sys.__stdout__.flush()


if __name__ == "__main__":
    main()
