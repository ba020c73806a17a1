"""Exceptions raised by the order engine and its collaborators.

Admission rejections are not exceptions; they are returned as a failed
RiskCheck and the engine answers with "no order".
"""
from typing import Optional


class InvalidInputError(ValueError):
    """Malformed input (forecast, price map, settings update) rejected before any mutation."""


class ExecutionFailedError(RuntimeError):
    """The execution venue refused or could not complete an order."""

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id
