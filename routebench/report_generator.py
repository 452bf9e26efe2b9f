"""
Report Generator Module.

Exports suite runs as Markdown, CSV, JSON or HTML reports, and builds
comparison tables for recommendation candidates.
"""

import json
from pathlib import Path
from typing import Optional
from datetime import datetime

import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots

from routebench.models import Candidate, SuiteRunResult

CSV_COLUMNS = [
    "caseId",
    "iteration",
    "ok",
    "tokensPerSecond",
    "timeToFirstToken",
    "totalTime",
    "cost",
    "promptTokens",
    "completionTokens",
    "error",
]


def _cell(value) -> str:
    return "" if value is None else str(value)


class ReportGenerator:
    """
    Generates suite run reports.

    Supports Markdown, CSV, JSON and HTML output formats.
    """

    def generate(
        self,
        result: SuiteRunResult,
        format: str = "markdown",
        output_path: Optional[str] = None,
    ) -> str:
        """
        Generate a report for a suite run.

        Args:
            result: Suite run to report on
            format: Output format (markdown, csv, json, html)
            output_path: Path to save the report

        Returns:
            Path to the generated report, or its content without a path
        """
        if format == "markdown":
            content = self._generate_markdown(result)
        elif format == "csv":
            content = self._generate_csv(result)
        elif format == "json":
            content = self._generate_json(result)
        elif format == "html":
            content = self._generate_html(result)
        else:
            raise ValueError(f"Unsupported format: {format}")

        if output_path:
            output_path = Path(output_path)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, "w", encoding="utf-8") as f:
                f.write(content)
            return str(output_path)

        return content

    def _generate_markdown(self, result: SuiteRunResult) -> str:
        """Generate the executive Markdown report."""
        agg = result.aggregates
        lines = [
            "# routebench Benchmark Report",
            "",
            f"- Date: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            f"- Suite: {result.suite_id}",
            f"- Model: {result.model}",
            f"- Provider: {result.provider}",
            f"- Runs: {len(result.results)}",
            "",
            "## Executive Summary",
            f"- Mean Tokens/sec: {agg.mean_tokens_per_second:.2f}",
            f"- Mean TTFB (s): {agg.mean_ttfb:.2f}",
            f"- Mean Total Time (s): {agg.mean_total_time:.2f}",
            f"- Mean Cost (USD): ${agg.mean_cost:.4f}",
            f"- Success Rate: {agg.success_rate * 100:.1f}%",
            "",
            "## Detailed Results",
            "| Case ID | Iter | TPS | TTFB (s) | Total (s) | Cost (USD) | Prompt Toks | Completion Toks | Error |",
            "|---|---:|---:|---:|---:|---:|---:|---:|---|",
        ]

        for r in result.results:
            res = r.result
            if r.ok and res is not None:
                lines.append(
                    f"| {r.case_id} | {r.iteration} | {res.tokens_per_second:.2f} | "
                    f"{res.time_to_first_token:.2f} | {res.total_time:.2f} | "
                    f"${res.cost:.4f} | {_cell(res.prompt_tokens)} | "
                    f"{res.completion_tokens} | |"
                )
            else:
                lines.append(
                    f"| {r.case_id} | {r.iteration} |  |  |  |  |  |  | {r.error or 'Error'} |"
                )

        lines += [
            "",
            "## Aggregates",
            f"- Tokens/sec: mean={agg.mean_tokens_per_second:.2f}, std={agg.std_tokens_per_second:.2f}",
            f"- TTFB: mean={agg.mean_ttfb:.2f}, std={agg.std_ttfb:.2f}",
            f"- Total Time: mean={agg.mean_total_time:.2f}, std={agg.std_total_time:.2f}",
            f"- Cost: mean=${agg.mean_cost:.4f}, std=${agg.std_cost:.4f}",
            f"- Total Prompt Tokens: {agg.total_prompt_tokens}",
            f"- Total Completion Tokens: {agg.total_completion_tokens}",
        ]
        return "\n".join(lines)

    def create_results_dataframe(self, result: SuiteRunResult) -> pd.DataFrame:
        """
        One row per case outcome, in CSV column order.

        Cells are strings so integer and missing values keep their
        exported form.
        """
        rows = []
        for r in result.results:
            res = r.result
            rows.append([
                r.case_id,
                str(r.iteration),
                "true" if r.ok else "false",
                _cell(res.tokens_per_second if res else None),
                _cell(res.time_to_first_token if res else None),
                _cell(res.total_time if res else None),
                _cell(res.cost if res else None),
                _cell(res.prompt_tokens if res else None),
                _cell(res.completion_tokens if res else None),
                "" if r.ok else (r.error or "Error"),
            ])
        return pd.DataFrame(rows, columns=CSV_COLUMNS, dtype=str)

    def _generate_csv(self, result: SuiteRunResult) -> str:
        """Generate the per-run CSV export."""
        df = self.create_results_dataframe(result)
        return df.to_csv(index=False, lineterminator="\n").rstrip("\n")

    def _generate_json(self, result: SuiteRunResult) -> str:
        """Generate JSON report."""
        return json.dumps(result.to_dict(), indent=2, default=str)

    def _create_run_chart(self, result: SuiteRunResult) -> go.Figure:
        """Per-run throughput and time-to-first-token chart."""
        ok = [r for r in result.results if r.ok and r.result is not None]
        labels = [f"{r.case_id} #{r.iteration}" for r in ok]

        fig = make_subplots(
            rows=1, cols=2,
            subplot_titles=("Tokens per Second", "Time to First Token (s)")
        )
        fig.add_trace(
            go.Bar(x=labels, y=[r.result.tokens_per_second for r in ok], name="Throughput"),
            row=1, col=1
        )
        fig.add_trace(
            go.Bar(x=labels, y=[r.result.time_to_first_token for r in ok], name="TTFB"),
            row=1, col=2
        )
        fig.update_layout(title=f"{result.model} on {result.suite_id}", showlegend=False)
        return fig

    def _generate_html(self, result: SuiteRunResult) -> str:
        """Generate HTML report with charts."""
        chart = self._create_run_chart(result).to_html(full_html=False, include_plotlyjs="cdn")
        table = self.create_results_dataframe(result).to_html(index=False, border=0)
        agg = result.aggregates

        return f"""
<!DOCTYPE html>
<html>
<head>
    <title>routebench Report - {result.suite_id}</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            max-width: 1200px;
            margin: 0 auto;
            padding: 20px;
        }}
        table {{
            width: 100%;
            border-collapse: collapse;
        }}
        th, td {{
            padding: 8px;
            text-align: left;
            border-bottom: 1px solid #eee;
        }}
    </style>
</head>
<body>
    <h1>routebench Benchmark Report</h1>
    <p>Suite: {result.suite_id} | Model: {result.model} | Provider: {result.provider}</p>
    <p>Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}</p>
    <ul>
        <li>Mean Tokens/sec: {agg.mean_tokens_per_second:.2f}</li>
        <li>Mean TTFB (s): {agg.mean_ttfb:.2f}</li>
        <li>Mean Total Time (s): {agg.mean_total_time:.2f}</li>
        <li>Mean Cost (USD): ${agg.mean_cost:.4f}</li>
        <li>Success Rate: {agg.success_rate * 100:.1f}%</li>
    </ul>
    {chart}
    {table}
</body>
</html>
"""

    def create_candidates_dataframe(self, candidates: list[Candidate]) -> pd.DataFrame:
        """
        Create a comparison DataFrame for ranked candidates.

        Args:
            candidates: Candidates in rank order

        Returns:
            DataFrame with one row per candidate
        """
        data = []
        for rank, c in enumerate(candidates, start=1):
            data.append({
                "rank": rank,
                "model": c.model_id,
                "provider": c.provider,
                "score": c.score,
                "tokens_per_sec": c.aggregates.mean_tokens_per_second,
                "ttfb_s": c.aggregates.mean_ttfb,
                "cost_per_1k": c.cost_per_1k,
                "success_rate": c.aggregates.success_rate,
            })
        return pd.DataFrame(data)
