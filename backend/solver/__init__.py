"""Solve math problems with a chat-completions reasoning model."""
from .gateway import SolvedProblem, SolverGateway, parse_solution
from .prompts import RESPONSE_FORMAT, build_messages, build_payload

__all__ = [
    "RESPONSE_FORMAT",
    "SolvedProblem",
    "SolverGateway",
    "build_messages",
    "build_payload",
    "parse_solution",
]
