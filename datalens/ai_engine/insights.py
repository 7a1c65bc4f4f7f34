from __future__ import annotations
from typing import Any, Dict, List, Mapping
import json

from ..core.errors import LLMError
from ..core.state import OperationState, StateCoordinator
from ..core.types import ColumnSummary, Dataset, InsightResult
from ..utils.logger import get_logger
from ..utils.settings import Settings
from .llm_client import LLMClient, generate_text
from .prompt_templates import INSIGHTS_PROMPT, INSIGHTS_ERROR_MESSAGE

LOGGER = get_logger("insights")

# === PROMPT ===
def build_snapshot(dataset: Dataset, summary: Mapping[str, ColumnSummary], *, sample_rows: int = 5) -> Dict[str, Any]:
    return {
        "totalRecords": dataset.record_count,
        "columns": list(dataset.columns),
        "sampleData": dataset.head(sample_rows),
        "summary": {col: stats.to_dict() for col, stats in summary.items()},
    }

def build_insights_prompt(
    dataset: Dataset,
    summary: Mapping[str, ColumnSummary],
    *,
    sample_rows: int = 5,
    count: int = 5,
) -> str:
    snapshot = build_snapshot(dataset, summary, sample_rows=sample_rows)
    blob = json.dumps(snapshot, ensure_ascii=False, separators=(",", ":"))
    return INSIGHTS_PROMPT.format(count=count, snapshot=blob)

def parse_insights(text: str) -> List[str]:
    """One insight per non-blank line, text kept as returned."""
    return [line for line in (text or "").splitlines() if line.strip()]

# === ORCHESTRATOR ===
class InsightOrchestrator:
    """Turns (Dataset, SummaryTable) into a list of insight sentences."""

    def __init__(self, client: LLMClient, coordinator: StateCoordinator, settings: Settings):
        self.client = client
        self.coordinator = coordinator
        self.settings = settings

    async def generate(self, dataset: Dataset, summary: Mapping[str, ColumnSummary]) -> InsightResult:
        """Call the model; never raises LLMError, falls back to the fixed message."""
        prompt = build_insights_prompt(
            dataset,
            summary,
            sample_rows=self.settings.insight_sample_rows,
            count=self.settings.insight_count,
        )
        try:
            text = await generate_text(
                self.client,
                prompt,
                timeout=self.settings.llm_timeout,
                retries=self.settings.llm_retries,
            )
        except LLMError as e:
            LOGGER.opt(exception=e).error(f"Error generating insights ({e.kind.value}): {e}")
            return InsightResult(version=dataset.version, insights=(INSIGHTS_ERROR_MESSAGE,), ok=False)
        return InsightResult(version=dataset.version, insights=tuple(parse_insights(text)), ok=True)

    async def run(self, dataset: Dataset, summary: Mapping[str, ColumnSummary]) -> InsightResult | None:
        """
        Generate and publish insights for `dataset` (already published).

        Returns None when a request for the same dataset version is already in
        flight. A result whose version is outdated by the time it arrives is
        returned but not published.
        """
        if not self.coordinator.begin_insights(dataset.version):
            LOGGER.info(f"Insight request for dataset v{dataset.version} already in flight")
            return None
        try:
            with self.coordinator.operation(OperationState.GENERATING_INSIGHTS):
                result = await self.generate(dataset, summary)
                self.coordinator.publish_insights(result)
                return result
        finally:
            self.coordinator.end_insights(dataset.version)
