"""Exception hierarchy shared by the sandbox, the model client and the agent loop."""


class AgentError(Exception):
    """Base class for every error raised by this project."""


class ExecutionError(AgentError):
    """Guest code could not produce a textual result."""

    kind = "execution"


class CompileError(ExecutionError):
    kind = "compile"


class GuestRuntimeError(ExecutionError):
    kind = "runtime"


class BadOutputError(ExecutionError):
    kind = "bad_output"


class UnexpectedVariantError(AgentError):
    """The model returned a tool call where text was required, or vice versa."""


class DependencyFailure(AgentError):
    """A search or page-fetch collaborator failed."""


class LLMCallError(AgentError):
    """The model call failed after exhausting retries."""
