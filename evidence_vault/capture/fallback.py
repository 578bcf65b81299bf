"""Priority fallback chains.

A chain is an ordered list of named steps. Each step either produces a
value (matched), produces nothing (not applicable) or raises (error). Steps
run in order until one matches; the attempts are kept for reporting.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StepOutcome(str, Enum):
    """Outcome of a single fallback step."""
    MATCHED = "matched"
    NOT_APPLICABLE = "not_applicable"
    ERROR = "error"


@dataclass
class StepAttempt:
    """Record of one step evaluation."""
    name: str
    outcome: StepOutcome
    error: Optional[str] = None


@dataclass
class ChainStep(Generic[T]):
    """Named step returning a value, or None when it does not apply."""
    name: str
    run: Callable[..., Awaitable[Optional[T]]]


@dataclass
class ChainResult(Generic[T]):
    """Result of running a fallback chain."""
    value: Optional[T] = None
    matched_step: Optional[str] = None
    attempts: List[StepAttempt] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.matched_step is not None

    @property
    def errors(self) -> List[str]:
        return [f"{a.name}: {a.error}" for a in self.attempts if a.outcome == StepOutcome.ERROR]

    def matched_first(self) -> bool:
        """True when the highest-priority step produced the value."""
        return bool(self.attempts) and self.attempts[0].outcome == StepOutcome.MATCHED


class FallbackChain(Generic[T]):
    """Ordered list of steps evaluated until one matches."""

    def __init__(self, name: str, steps: Optional[List[ChainStep[T]]] = None):
        self.name = name
        self.steps: List[ChainStep[T]] = list(steps or [])

    def add(self, name: str, run: Callable[..., Awaitable[Optional[T]]]) -> "FallbackChain[T]":
        """Append a step; returns the chain for chaining calls."""
        self.steps.append(ChainStep(name=name, run=run))
        return self

    async def run(self, *args: Any, **kwargs: Any) -> ChainResult[T]:
        """Evaluate steps in order, passing the same arguments to each.

        Returns:
            ChainResult with the first matched value, or no value if every
            step was not applicable or failed
        """
        result: ChainResult[T] = ChainResult()

        for step in self.steps:
            try:
                value = await step.run(*args, **kwargs)
            except Exception as e:
                logger.debug(f"[{self.name}] step {step.name} failed: {e}")
                result.attempts.append(StepAttempt(step.name, StepOutcome.ERROR, str(e)))
                continue

            if value is None:
                result.attempts.append(StepAttempt(step.name, StepOutcome.NOT_APPLICABLE))
                continue

            result.attempts.append(StepAttempt(step.name, StepOutcome.MATCHED))
            result.value = value
            result.matched_step = step.name
            logger.debug(f"[{self.name}] matched by {step.name}")
            return result

        logger.debug(f"[{self.name}] no step matched ({len(self.steps)} tried)")
        return result

    def __len__(self) -> int:
        return len(self.steps)

    def __repr__(self) -> str:
        names = ", ".join(step.name for step in self.steps)
        return f"FallbackChain({self.name}: {names})"
