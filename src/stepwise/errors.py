# errors.py
# Exception hierarchy for the agent loop and the script interpreter.
#
# Two taxonomies, one per layer. Agent errors are recorded on the transcript
# and fed back to the model; only AgentGenerationError aborts a run.
# Interpreter errors never leave the code agent: FinalAnswerSignal ends the
# run, every other variant is recorded as an AgentExecutionError.


# ---------------------------------------------------------------------------
# Agent level
# ---------------------------------------------------------------------------


class AgentError(Exception):
    """Base exception for all agent-loop errors."""

    kind = "agent"

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class AgentParsingError(AgentError):
    """Model output could not be parsed (no code block, bad tool arguments)."""

    kind = "parsing"


class AgentExecutionError(AgentError):
    """A tool call or script execution failed."""

    kind = "execution"


class AgentMaxStepsError(AgentError):
    """The step budget ran out before an answer was produced."""

    kind = "max_steps"


class AgentGenerationError(AgentError):
    """The model gateway could not be reached or returned garbage. Always fatal."""

    kind = "generation"

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message, retryable=retryable)


# ---------------------------------------------------------------------------
# Interpreter level
# ---------------------------------------------------------------------------


class InterpreterError(Exception):
    """Base exception raised while parsing or evaluating a script."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class InterpreterSyntaxError(InterpreterError):
    """The script failed to parse. Nothing was evaluated."""


class InterpreterRuntimeError(InterpreterError):
    """Evaluation failed part-way through the script."""


class FinalAnswerSignal(InterpreterError):
    """Raised by `final_answer(...)` to stop the script and the agent run."""

    def __init__(self, answer: str) -> None:
        super().__init__(answer)
        self.answer = answer


class OperationLimitExceeded(InterpreterError):
    """The script ran more operations than the interpreter allows."""


class UnauthorizedImport(InterpreterError):
    """The script imported a module outside the allow-list."""


class UnsupportedOperation(InterpreterError):
    """The script used a statement or expression form the interpreter lacks."""
