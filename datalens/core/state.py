from __future__ import annotations
import itertools
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Set, Tuple

from .types import ChatMessage, ColumnSet, ColumnSummary, ConversationLog, Dataset, InsightResult, SummaryTable
from ..utils.logger import get_logger

LOGGER = get_logger("state")

Listener = Callable[["AppState"], None]


class OperationState(str, Enum):
    IDLE = "idle"
    SUMMARIZING = "summarizing"
    GENERATING_INSIGHTS = "generating_insights"
    AWAITING_CHAT_RESPONSE = "awaiting_chat_response"


def _frozen_summary(summary: Optional[SummaryTable]) -> Mapping[str, ColumnSummary]:
    return MappingProxyType(dict(summary or {}))


@dataclass(frozen=True)
class AppState:
    """Immutable snapshot read by the presentation layer."""
    dataset: Optional[Dataset] = None
    summary: Mapping[str, ColumnSummary] = field(default_factory=lambda: MappingProxyType({}))
    insights: Tuple[str, ...] = ()
    conversation: ConversationLog = field(default_factory=ConversationLog)
    operation: OperationState = OperationState.IDLE

    @property
    def version(self) -> int:
        return self.dataset.version if self.dataset is not None else 0

    @property
    def columns(self) -> ColumnSet:
        return self.dataset.columns if self.dataset is not None else ()

    @property
    def is_busy(self) -> bool:
        return self.operation is not OperationState.IDLE

    @property
    def can_submit_chat(self) -> bool:
        return self.dataset is not None and not self.is_busy


class StateCoordinator:
    """
    Owner of the current AppState and of the single busy indicator.

    Operations hold leases; releasing one lease never clears another, and the
    visible OperationState is the most recently acquired active lease.
    Results tagged with an outdated dataset version or conversation epoch are
    dropped instead of overwriting newer state.
    """

    def __init__(self, initial: Optional[AppState] = None):
        self._state = initial or AppState()
        self._leases: Dict[int, OperationState] = {}
        self._lease_ids = itertools.count(1)
        self._versions = itertools.count(self._state.version + 1)
        self._insights_in_flight: Set[int] = set()
        self._conversation_epoch = 0
        self._listeners: List[Listener] = []

    # ---- reads ----
    @property
    def state(self) -> AppState:
        return self._state

    @property
    def operation_state(self) -> OperationState:
        return self._state.operation

    @property
    def is_busy(self) -> bool:
        return bool(self._leases)

    @property
    def conversation_epoch(self) -> int:
        return self._conversation_epoch

    def can_submit_chat(self) -> bool:
        return self._state.dataset is not None and not self.is_busy

    # ---- listeners ----
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, new_state: AppState) -> AppState:
        self._state = new_state
        for listener in list(self._listeners):
            listener(new_state)
        return new_state

    # ---- busy indicator ----
    def _current_operation(self) -> OperationState:
        if not self._leases:
            return OperationState.IDLE
        return next(reversed(self._leases.values()))

    def acquire(self, operation: OperationState) -> int:
        if operation is OperationState.IDLE:
            raise ValueError("IDLE is not an operation")
        lease = next(self._lease_ids)
        self._leases[lease] = operation
        LOGGER.debug(f"Lease {lease} acquired: {operation.value}")
        self._publish(replace(self._state, operation=self._current_operation()))
        return lease

    def release(self, lease: int) -> None:
        if self._leases.pop(lease, None) is None:
            LOGGER.warning(f"Release of unknown lease {lease}")
            return
        LOGGER.debug(f"Lease {lease} released")
        self._publish(replace(self._state, operation=self._current_operation()))

    @contextmanager
    def operation(self, operation: OperationState) -> Iterator[int]:
        lease = self.acquire(operation)
        try:
            yield lease
        finally:
            self.release(lease)

    # ---- dataset ----
    def publish_dataset(self, dataset: Dataset, summary: SummaryTable, *, reset_conversation: bool = True) -> Dataset:
        """Replace dataset and summary wholesale; clears insights."""
        versioned = dataset.with_version(next(self._versions))
        conversation = self._state.conversation
        if reset_conversation:
            conversation = ConversationLog()
            self._conversation_epoch += 1
        self._publish(replace(
            self._state,
            dataset=versioned,
            summary=_frozen_summary(summary),
            insights=(),
            conversation=conversation,
        ))
        LOGGER.info(
            f"Dataset v{versioned.version} published: {versioned.record_count} rows, "
            f"{len(summary)} numeric columns"
        )
        return versioned

    # ---- insights ----
    def begin_insights(self, version: int) -> bool:
        """Claim the single insight slot of `version`; False when already taken."""
        if version in self._insights_in_flight:
            return False
        self._insights_in_flight.add(version)
        return True

    def end_insights(self, version: int) -> None:
        self._insights_in_flight.discard(version)

    def insights_in_flight(self, version: int) -> bool:
        return version in self._insights_in_flight

    def publish_insights(self, result: InsightResult) -> bool:
        if result.version != self._state.version:
            LOGGER.info(f"Discarding insights for stale dataset v{result.version} (current v{self._state.version})")
            return False
        self._publish(replace(self._state, insights=tuple(result.insights)))
        return True

    # ---- conversation ----
    def append_message(self, message: ChatMessage, *, epoch: Optional[int] = None) -> bool:
        if epoch is not None and epoch != self._conversation_epoch:
            LOGGER.info(f"Discarding {message.role.value} message from a reset conversation")
            return False
        self._publish(replace(self._state, conversation=self._state.conversation.append(message)))
        return True
