"""Local output module.

Renders a report as Markdown and saves it to output/YYYY-MM-DD/<kind>.md.
Markdown 同时用作邮件正文与 CLI 输出。
"""

import logging
from pathlib import Path

from .models import Report, ReportKind

logger = logging.getLogger(__name__)

TITLES = {
    ReportKind.MORNING: "☀️ 美股早報",
    ReportKind.EVENING: "🌙 市場晚報",
}


def report_title(report: Report) -> str:
    return f"{TITLES[report.kind]} {report.date_key}"


def render_markdown(report: Report) -> str:
    """Generate a Markdown document for one report."""
    lines: list[str] = []

    lines.append(f"# {report_title(report)}")
    lines.append("")
    lines.append(
        f"> {report.created_at.strftime('%Y-%m-%d %H:%M')} · status: {report.status.value}"
    )
    lines.append("")
    lines.append(report.content or "_(generating...)_")
    lines.append("")

    if report.sources:
        lines.append("---")
        lines.append("")
        lines.append("**參考來源**")
        lines.append("")
        for source in report.sources:
            lines.append(f"- [{source.title}]({source.url})")
        lines.append("")

    return "\n".join(lines)


def save_report(report: Report, output_dir: str = "output") -> Path:
    """Write the report's Markdown to ``<output_dir>/<date_key>/<kind>.md``.

    Returns:
        Path to the written file.
    """
    day_dir = Path(output_dir) / report.date_key
    day_dir.mkdir(parents=True, exist_ok=True)

    md_path = day_dir / f"{report.kind.value.lower()}.md"
    md_path.write_text(render_markdown(report), encoding="utf-8")
    logger.info("Saved Markdown report: %s", md_path)
    return md_path
