from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional
import json

from ..core.state import AppState


def build_report_dict(state: AppState, *, generated_at: Optional[str] = None) -> Dict[str, Any]:
    dataset = state.dataset
    return {
        "generated_at": generated_at or datetime.now().isoformat(timespec="seconds"),
        "dataset": {
            "source": dataset.source_name if dataset else None,
            "version": state.version,
            "records": dataset.record_count if dataset else 0,
            "columns": list(state.columns),
        },
        "summary": {col: stats.to_dict() for col, stats in state.summary.items()},
        "insights": list(state.insights),
        "conversation": state.conversation.to_list(),
    }


def build_json_report(state: AppState, *, generated_at: Optional[str] = None) -> str:
    return json.dumps(build_report_dict(state, generated_at=generated_at), ensure_ascii=False, indent=2)


def build_markdown_report(state: AppState, *, generated_at: Optional[str] = None) -> str:
    """Markdown export of the session: dataset, statistics, insights and transcript."""
    data = build_report_dict(state, generated_at=generated_at)
    ds = data["dataset"]
    lines: List[str] = [
        "# Data Analysis Report",
        f"\n**Generated:** {data['generated_at']}\n",
        "## Dataset\n",
        f"- Source: {ds['source'] or 'n/a'}",
        f"- Records: {ds['records']}",
        f"- Columns: {', '.join(ds['columns']) or 'n/a'}",
        "\n## Statistical Summary\n",
    ]
    if data["summary"]:
        lines.append("| Column | Mean | Median | Max | Min | Sum |")
        lines.append("|---|---|---|---|---|---|")
        for col, s in data["summary"].items():
            lines.append(f"| {col} | {s['mean']} | {s['median']} | {s['max']} | {s['min']} | {s['sum']} |")
    else:
        lines.append("No numeric columns.")

    lines.append("\n## Insights\n")
    if data["insights"]:
        lines.extend(f"{i}. {text}" for i, text in enumerate(data["insights"], 1))
    else:
        lines.append("No insights yet.")

    if data["conversation"]:
        lines.append("\n## Conversation\n")
        for msg in data["conversation"]:
            lines.append(f"**{msg['role'].capitalize()}:** {msg['content']}\n")
    return "\n".join(lines)
