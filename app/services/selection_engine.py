"""Random selection among an opportunity's bidders.

The draw is a uniform Fisher-Yates shuffle of the bidder pool; the first
``capacity`` students of the shuffled order win. The outcome is fixed when
``select`` returns. The reveal steps that follow only replay that outcome for
animation, so how (or whether) they are consumed cannot change who wins.
"""

import asyncio
import inspect
import random
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Iterator,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from core.exceptions.base import ErrorCode
from core.logging import get_logger

logger = get_logger(__name__)


class HasId(Protocol):
    id: str


T = TypeVar("T", bound=HasId)


class RandomSource(Protocol):
    def randrange(self, stop: int) -> int: ...


@dataclass(frozen=True)
class RevealStep:
    """
    One frame of the reveal animation.

    ``order`` is the display order of candidate ids, ``highlighted`` the ids lit
    in this frame. Only the last step has ``is_complete`` set, and only it
    carries ``winners``.
    """

    index: int
    order: Tuple[str, ...]
    highlighted: Tuple[str, ...]
    is_complete: bool = False
    winners: Tuple[str, ...] = ()


@dataclass
class SelectionResult(Generic[T]):
    """Outcome of a draw, or the reason it could not run."""

    success: bool
    capacity: int = 0
    winners: List[T] = field(default_factory=list)
    order: List[T] = field(default_factory=list)  # full shuffled order (bidder order if not randomized)
    randomized: bool = False
    error: Optional[ErrorCode] = None
    message: Optional[str] = None

    @property
    def winner_ids(self) -> List[str]:
        return [w.id for w in self.winners]

    def reveal(self) -> Iterator[RevealStep]:
        """Lazy, finite reveal sequence for this result (see ``reveal_steps``)."""
        return reveal_steps(self)


def fisher_yates(items: Sequence[T], rng: RandomSource) -> List[T]:
    """Return a uniformly shuffled copy of ``items``."""
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randrange(i + 1)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


class SelectionEngine:
    """
    Pick up to ``capacity`` winners uniformly at random.

    Pass ``rng`` (anything with ``randrange``) to make draws reproducible; the
    default is the operating system's cryptographic source.
    """

    def __init__(self, rng: Optional[RandomSource] = None):
        self.rng = rng if rng is not None else random.SystemRandom()

    def select(self, bidders: Sequence[T], capacity: int) -> SelectionResult[T]:
        if capacity < 0:
            return SelectionResult(
                success=False,
                capacity=capacity,
                error=ErrorCode.INVALID_CAPACITY,
                message=f"Capacity must be zero or more, got {capacity}",
            )

        seen = set()
        duplicates = []
        for bidder in bidders:
            if bidder.id in seen:
                duplicates.append(bidder.id)
            seen.add(bidder.id)
        if duplicates:
            return SelectionResult(
                success=False,
                capacity=capacity,
                error=ErrorCode.DUPLICATE_BIDDER,
                message=f"Duplicate bidders: {', '.join(sorted(set(duplicates)))}",
            )

        if len(bidders) <= capacity:
            logger.debug(f"{len(bidders)} bidders within capacity {capacity}; everyone wins")
            return SelectionResult(
                success=True,
                capacity=capacity,
                winners=list(bidders),
                order=list(bidders),
                randomized=False,
            )

        shuffled = fisher_yates(bidders, self.rng)
        logger.debug(f"Drew {capacity} of {len(bidders)} bidders")
        return SelectionResult(
            success=True,
            capacity=capacity,
            winners=shuffled[:capacity],
            order=shuffled,
            randomized=True,
        )


def engine_for_seed(seed: Union[str, int]) -> SelectionEngine:
    """Deterministic engine used to record and replay a draw."""
    return SelectionEngine(random.Random(seed))


def reveal_steps(result: SelectionResult) -> Iterator[RevealStep]:
    """
    Yield the animation frames for a finished draw.

    Under capacity there is a single complete frame. Otherwise: an initial frame
    with nothing lit, then each candidate in shuffled order is lit; candidates
    past the capacity index are un-lit again in a following frame. The last
    frame is complete and lists the winners. A failed result yields nothing.
    """
    if not result.success:
        return

    order = tuple(s.id for s in result.order)
    winners = tuple(result.winner_ids)
    index = 0

    if result.randomized:
        yield RevealStep(index=index, order=order, highlighted=())
        index += 1
        for position, candidate in enumerate(order):
            yield RevealStep(index=index, order=order, highlighted=(candidate,))
            index += 1
            if position >= result.capacity:
                yield RevealStep(index=index, order=order, highlighted=())
                index += 1

    yield RevealStep(
        index=index, order=order, highlighted=winners, is_complete=True, winners=winners
    )


StepCallback = Callable[[RevealStep], Union[None, Awaitable[Any]]]


async def play_reveal(
    result: SelectionResult,
    on_step: StepCallback,
    step_delay: float = 0.15,
    initial_delay: float = 1.0,
) -> List[str]:
    """
    Push reveal frames to ``on_step`` at the given pace.

    Cancelling the awaiting task stops playback; the draw result is untouched.
    Returns the winner ids.
    """
    previous: Optional[RevealStep] = None
    for step in result.reveal():
        if previous is not None:
            if previous.index == 0 and result.randomized:
                await asyncio.sleep(initial_delay)
            elif not previous.highlighted:
                await asyncio.sleep(step_delay / 2)
            else:
                await asyncio.sleep(step_delay)
        outcome = on_step(step)
        if inspect.isawaitable(outcome):
            await outcome
        previous = step
    return list(result.winner_ids)
