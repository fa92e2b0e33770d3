"""Utilities to serialise outcome logs into structured formats."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .models import OutcomeRecord, RunReport


def _record_to_dict(record: OutcomeRecord) -> dict[str, Any]:
    """Convert a record into a serialisable dictionary."""
    entry: dict[str, Any] = {
        "stage": record.stage,
        "kind": record.kind.value,
        "key": record.key,
        "outcome": record.outcome.value,
    }
    if record.error:
        entry["error"] = record.error
    return entry


def report_to_dict(report: RunReport) -> dict[str, Any]:
    """Create a dictionary describing the run."""
    return {
        "domain": {"fqdn": report.domain.fqdn, "dn_suffix": report.domain.dn_suffix},
        "mode": "plan" if report.dry_run else "apply",
        "cancelled": report.cancelled,
        "summary": {outcome.value: count for outcome, count in sorted(report.counts().items())},
        "records": [_record_to_dict(record) for record in report.records],
    }


def report_to_yaml(report: RunReport) -> str:
    """Return YAML representation of a run report."""
    return yaml.safe_dump(report_to_dict(report), sort_keys=False)


def report_to_json(report: RunReport) -> str:
    """Return JSON representation of a run report."""
    return json.dumps(report_to_dict(report), indent=2)


def write_report(path: Path, content: str) -> None:
    """Write content to the given path, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
