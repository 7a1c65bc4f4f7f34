from __future__ import annotations
import asyncio
from typing import Any, Mapping, Optional, Sequence, Tuple, Union

from .errors import ParseError
from .state import AppState, OperationState, StateCoordinator
from .types import ChatMessage, Dataset, InsightResult, SummaryTable
from ..ai_engine.insights import InsightOrchestrator
from ..ai_engine.llm_client import LLMClient, build_client
from ..chat.agent import ChatOrchestrator
from ..data_processing.file_parser import ParseOptions, dataset_from_rows, parse_table
from ..data_processing.summarizer import summarize
from ..utils.logger import get_logger
from ..utils.settings import Settings, load_settings

LOGGER = get_logger("session")


class AnalysisSession:
    """
    One user's analysis session: upload -> summary -> insights, plus chat.

    The presentation layer reads `state` and writes only through `upload`,
    `ingest_rows`, `regenerate_insights` and `submit_chat`.
    """

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        settings: Optional[Settings] = None,
        coordinator: Optional[StateCoordinator] = None,
    ):
        self.settings = settings or load_settings()
        self.client = client or build_client(self.settings)
        self.coordinator = coordinator or StateCoordinator()
        self.insights = InsightOrchestrator(self.client, self.coordinator, self.settings)
        self.chat = ChatOrchestrator(self.client, self.coordinator, self.settings)

    @property
    def state(self) -> AppState:
        return self.coordinator.state

    # ---- ingestion ----
    async def upload(self, file_name: Optional[str], data: Union[bytes, bytearray, str]) -> InsightResult | None:
        """
        Parse an uploaded file and run the pipeline on it.

        Raises:
            ParseError: the file is unusable; the previous dataset stays current
        """
        raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        opts = ParseOptions(max_file_size_mb=self.settings.max_file_size_mb)
        with self.coordinator.operation(OperationState.SUMMARIZING):
            try:
                dataset = await asyncio.to_thread(parse_table, raw, file_name, opts)
            except ParseError as e:
                LOGGER.warning(f"Upload rejected ({file_name}): {e}")
                raise
            published, summary = self._publish(dataset)
        return await self.insights.run(published, summary)

    async def ingest_rows(self, rows: Sequence[Mapping[str, Any]], *, source_name: Optional[str] = None) -> InsightResult | None:
        """Pipeline entry for rows already tokenized by an external reader."""
        with self.coordinator.operation(OperationState.SUMMARIZING):
            dataset = dataset_from_rows(rows, source_name=source_name)
            published, summary = self._publish(dataset)
        return await self.insights.run(published, summary)

    def _publish(self, dataset: Dataset) -> Tuple[Dataset, SummaryTable]:
        summary = summarize(dataset, dataset.columns, mode=self.settings.numeric_inference)
        published = self.coordinator.publish_dataset(
            dataset, summary, reset_conversation=self.settings.reset_chat_on_upload
        )
        return published, summary

    # ---- insights ----
    async def regenerate_insights(self) -> InsightResult | None:
        state = self.state
        if state.dataset is None:
            return None
        return await self.insights.run(state.dataset, dict(state.summary))

    # ---- chat ----
    async def submit_chat(self, utterance: str) -> Optional[Tuple[ChatMessage, ChatMessage]]:
        return await self.chat.submit(utterance)
