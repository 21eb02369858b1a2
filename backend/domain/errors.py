"""Error taxonomy shared by the solver, the store and the HTTP layer."""


class MathSolverError(Exception):
    """Base class for errors raised by the math solver backend."""


class ValidationError(MathSolverError):
    """A request field is missing, malformed or out of range."""


class SolverUnavailableError(MathSolverError):
    """The reasoning model could not be reached or refused the call."""


class MalformedSolutionOutput(MathSolverError):
    """The model answered, but not with a usable solution object.

    Only raised inside the solver gateway, which recovers from it.
    """


class NotFoundError(MathSolverError):
    """No entity exists for the given identifier."""
