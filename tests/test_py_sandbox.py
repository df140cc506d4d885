"""Tests for the per-call Python sandbox.

These run real guest interpreters through py_bridge.py; no mocks.
"""

import json
import os
import subprocess
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
import py_sandbox
from errors import BadOutputError, CompileError, ExecutionError, GuestRuntimeError
from py_sandbox import CAPTURED_OUTPUT_VAR, execute, run_python, run_python_capture, wrap_for_capture

BRIDGE = os.path.join(os.path.dirname(__file__), "..", "py_bridge.py")


def run_bridge(cmd):
    """Drive py_bridge.py directly and return its parsed response."""
    proc = subprocess.run(
        [sys.executable, BRIDGE],
        input=json.dumps(cmd),
        capture_output=True,
        text=True,
    )
    last = [line for line in proc.stdout.splitlines() if line.strip()][-1]
    return json.loads(last)


# ============================================================
# Captured mode
# ============================================================


class TestCapturedMode:
    def test_print_hello(self):
        """print("hello") comes back as exactly "hello\\n"."""
        assert run_python_capture('print("hello")') == "hello\n"

    def test_multiple_prints(self):
        code = "for i in range(3):\n    print(i)"
        assert execute(code) == "0\n1\n2\n"

    def test_no_output(self):
        assert execute("x = 1") == ""

    def test_unicode_output(self):
        assert execute('print("héllo ✓")') == "héllo ✓\n"

    def test_stdlib_available(self):
        assert execute("import math\nprint(math.sqrt(16))") == "4.0\n"

    def test_guest_output_does_not_reach_host_stdout(self, capsys):
        execute('print("guest only")')
        assert "guest only" not in capsys.readouterr().out

    def test_guest_stderr_relayed_to_host_stderr(self, capsys):
        execute('import sys\nprint("warning!", file=sys.stderr)')
        assert "[pybox-guest] warning!" in capsys.readouterr().err

    def test_guest_variable_named_output_is_fine(self):
        """Guest names do not collide with the capture buffer."""
        assert execute('output = "mine"\nprint(output)') == "mine\n"

    def test_future_import_allowed(self):
        """A leading __future__ import stays ahead of the capture preamble."""
        code = "from __future__ import annotations\nprint('hi')"
        assert execute(code) == "hi\n"

    def test_future_import_after_docstring(self):
        code = '"""Module doc."""\nfrom __future__ import annotations\n\ndef f(x: Undefined): return x\nprint(f(1))'
        assert execute(code) == "1\n"

    def test_wrapped_future_import_comes_first(self):
        wrapped = wrap_for_capture("from __future__ import annotations\nx = 1")
        assert wrapped.startswith("from __future__ import annotations\n")

    def test_deleted_capture_buffer_is_runtime_error(self):
        """The epilogue itself fails when the guest removes the buffer."""
        with pytest.raises(GuestRuntimeError, match="_pybox_buffer"):
            execute("del _pybox_buffer")


# ============================================================
# Plain mode
# ============================================================


class TestPlainMode:
    def test_final_expression_is_result(self):
        assert run_python('x = "abc"\nx * 2') == "abcabc"

    def test_non_string_result_is_bad_output(self):
        with pytest.raises(BadOutputError):
            run_python("1 + 1")

    def test_no_final_expression_is_bad_output(self):
        with pytest.raises(BadOutputError):
            run_python("x = 'abc'")

    def test_raise_is_runtime_error_with_message(self):
        with pytest.raises(GuestRuntimeError) as exc_info:
            run_python("raise ValueError('boom')")
        assert str(exc_info.value) == "boom"

    def test_raise_without_args_has_nonempty_message(self):
        with pytest.raises(GuestRuntimeError) as exc_info:
            run_python("raise ValueError()")
        assert str(exc_info.value) == "No error message available"

    def test_non_string_error_arg(self):
        with pytest.raises(GuestRuntimeError) as exc_info:
            run_python("raise KeyError(42)")
        assert str(exc_info.value) == "Unknown error"

    def test_name_error(self):
        with pytest.raises(GuestRuntimeError) as exc_info:
            run_python("undefined_name")
        assert "undefined_name" in str(exc_info.value)

    def test_prints_do_not_corrupt_protocol(self):
        """Plain-mode prints are diverted away from the response channel."""
        assert run_python('print("noise")\n"result"') == "result"


# ============================================================
# Failures
# ============================================================


class TestFailures:
    def test_syntax_error_is_compile_error(self):
        with pytest.raises(CompileError):
            execute("def broken(:\n    pass")

    def test_compile_error_never_starts_guest(self):
        """Unparseable code is rejected before any interpreter is spawned."""
        with patch("py_sandbox.subprocess.run") as mock_run:
            with pytest.raises(CompileError):
                execute("print(")
            with pytest.raises(CompileError):
                execute("print(", capture_stdout=False)
        mock_run.assert_not_called()

    def test_runtime_error_in_captured_mode(self):
        with pytest.raises(GuestRuntimeError) as exc_info:
            execute("print('partial')\nraise RuntimeError('failed here')")
        assert str(exc_info.value) == "failed here"

    def test_sys_exit_is_runtime_error(self):
        with pytest.raises(GuestRuntimeError):
            execute("import sys\nsys.exit(3)")

    def test_hard_exit_without_response(self):
        """os._exit skips the response entirely; the exit code is reported."""
        with pytest.raises(GuestRuntimeError, match="exit code 7"):
            execute("import os\nos._exit(7)")

    def test_all_failures_are_execution_errors(self):
        for code in ("print(", "raise ValueError('x')"):
            with pytest.raises(ExecutionError):
                execute(code)


# ============================================================
# Isolation
# ============================================================


class TestIsolation:
    def test_variables_do_not_leak_between_calls(self):
        """A name defined in one call is undefined in the next."""
        assert execute("leaked = 'secret'\nprint(leaked)") == "secret\n"
        with pytest.raises(GuestRuntimeError, match="leaked"):
            execute("print(leaked)")

    def test_module_state_does_not_leak(self):
        execute("import json\njson.sentinel_attr = 1")
        assert execute("import json\nprint(hasattr(json, 'sentinel_attr'))") == "False\n"

    def test_host_stdout_untouched(self):
        """Captured mode never rebinds the host's sys.stdout."""
        before = sys.stdout
        execute("import sys\nsys.stdout = None")
        assert sys.stdout is before


# ============================================================
# Bridge protocol
# ============================================================


class TestBridgeProtocol:
    def test_exec_reads_result_var(self):
        resp = run_bridge({"op": "exec", "code": "answer = 'forty-two'", "result_var": "answer"})
        assert resp == {"status": "ok", "value": "forty-two"}

    def test_exec_missing_result_var(self):
        resp = run_bridge({"op": "exec", "code": "x = 1", "result_var": "answer"})
        assert resp["status"] == "bad_output"

    def test_exec_non_string_result_var(self):
        resp = run_bridge({"op": "exec", "code": "answer = 42", "result_var": "answer"})
        assert resp["status"] == "bad_output"

    def test_wrapped_code_binds_captured_output(self):
        resp = run_bridge({
            "op": "exec",
            "code": wrap_for_capture("print('hi')"),
            "result_var": CAPTURED_OUTPUT_VAR,
        })
        assert resp == {"status": "ok", "value": "hi\n"}

    def test_eval_compile_error(self):
        resp = run_bridge({"op": "eval", "code": "def ("})
        assert resp["status"] == "compile_error"

    def test_unknown_op(self):
        resp = run_bridge({"op": "frobnicate", "code": ""})
        assert resp["status"] == "runtime_error"
        assert "frobnicate" in resp["message"]

    def test_guest_python_override(self, monkeypatch):
        """PYBOX_PYTHON selects the guest interpreter."""
        monkeypatch.setenv("PYBOX_PYTHON", sys.executable)
        assert py_sandbox._guest_python() == sys.executable
        assert execute("print('ok')") == "ok\n"
