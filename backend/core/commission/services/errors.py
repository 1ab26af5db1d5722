from __future__ import annotations

from dataclasses import dataclass


class CommissionEngineError(RuntimeError):
    """Base error for commission engine failures."""


class CommissionRuleError(CommissionEngineError):
    """Raised when a calculation receives an invalid rule or amount."""


class RuleValidationError(CommissionEngineError):
    """Raised when a rule definition is rejected before persistence."""

    def __init__(self, errors: dict[str, list[str]]):
        self.errors = {field: list(messages) for field, messages in errors.items()}
        super().__init__("; ".join(f"{field}: {' '.join(msgs)}" for field, msgs in self.errors.items()))


class CommissionNotFoundError(CommissionEngineError):
    """Raised when a referenced product, vendor, category, rule or record does not exist."""


class CommissionUnavailableError(CommissionEngineError):
    """Raised when rule or ledger storage cannot be reached.

    Never translated into "no rule" or a zero commission: payouts depend on it.
    """


@dataclass(frozen=True, slots=True)
class RuleDeletionResult:
    deleted: bool
    deactivated: bool

    @property
    def detail(self) -> str:
        if self.deleted:
            return "Commission rule deleted."
        return "Commission rule deactivated (has historical usage)."
