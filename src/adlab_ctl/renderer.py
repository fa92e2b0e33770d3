"""Render outcome logs via Jinja2 templates."""

from __future__ import annotations

from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, StrictUndefined

from .models import Outcome, OutcomeRecord, RunReport

BUNDLED_TEMPLATES = Path(__file__).resolve().parent / "templates"

MARKS = {
    Outcome.CREATED.value: "+",
    Outcome.ADDED.value: "+",
    Outcome.PLANNED.value: "~",
    Outcome.PRESENT.value: "=",
    Outcome.ALREADY_MEMBER.value: "=",
    Outcome.UNAVAILABLE.value: "-",
    Outcome.FAILED.value: "!",
    Outcome.NOT_FOUND.value: "!",
    Outcome.INVALID.value: "!",
}


def _record_to_template_data(record: OutcomeRecord) -> dict[str, str]:
    """Convert a record into template-friendly data."""
    return {
        "kind": record.kind.value,
        "key": record.key,
        "outcome": record.outcome.value,
        "error": record.error or "",
    }


def render_report(
    report: RunReport,
    templates_dir: Path | None = None,
    template_name: str = "report.j2",
) -> str:
    """Render a run report; templates in `templates_dir` override the bundled ones."""
    loaders = []
    if templates_dir is not None and templates_dir.is_dir():
        loaders.append(FileSystemLoader(str(templates_dir)))
    loaders.append(FileSystemLoader(str(BUNDLED_TEMPLATES)))
    env = Environment(
        loader=ChoiceLoader(loaders),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    template = env.get_template(template_name)
    stages = [
        {"name": name, "records": [_record_to_template_data(r) for r in report.iter_stage(name)]}
        for name in report.stages()
    ]
    totals = sorted((outcome.value, count) for outcome, count in report.counts().items())
    text = template.render(
        dry_run=report.dry_run,
        domain=report.domain.__dict__,
        stages=stages,
        totals=totals,
        cancelled=report.cancelled,
        marks=MARKS,
    )
    return text.strip() + "\n"
