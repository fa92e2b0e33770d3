from __future__ import annotations

import json
from pathlib import Path

import yaml

from adlab_ctl.exporter import report_to_dict, report_to_json, report_to_yaml, write_report
from adlab_ctl.models import DomainIdentity, Outcome, ResourceKind, RunReport
from adlab_ctl.renderer import render_report


def _report(domain: DomainIdentity, dry_run: bool = False) -> RunReport:
    report = RunReport(domain=domain, dry_run=dry_run)
    report.add("sites", ResourceKind.SITE, "HQ", Outcome.CREATED)
    report.add("services", ResourceKind.DNS_ZONE, "corp.ex.lab", Outcome.UNAVAILABLE, "dns not provisioned")
    report.add("memberships", ResourceKind.MEMBERSHIP, "jdoe->VPN-Users", Outcome.NOT_FOUND, "group VPN-Users not found")
    return report


def test_rendered_report_groups_records_by_stage(domain: DomainIdentity) -> None:
    text = render_report(_report(domain))

    assert text.startswith("Apply for ex.lab (DC=ex,DC=lab)")
    assert "[sites]\n + site HQ: created" in text
    assert " - dns-zone corp.ex.lab: unavailable (dns not provisioned)" in text
    assert text.index("[services]") < text.index("[memberships]")
    assert text.rstrip().endswith("Summary: created=1, not-found=1, unavailable=1")


def test_empty_plan_has_nothing_to_do(domain: DomainIdentity) -> None:
    text = render_report(RunReport(domain=domain, dry_run=True))

    assert text.startswith("Plan for ex.lab")
    assert "Summary: nothing to do" in text


def test_templates_dir_overrides_bundled_template(tmp_path: Path, domain: DomainIdentity) -> None:
    (tmp_path / "report.j2").write_text("{{ totals | length }} outcome kinds", encoding="utf-8")

    assert render_report(_report(domain), tmp_path) == "3 outcome kinds\n"


def test_structured_exports(domain: DomainIdentity, tmp_path: Path) -> None:
    report = _report(domain, dry_run=True)
    report.cancelled = True

    data = report_to_dict(report)
    assert data["mode"] == "plan"
    assert data["cancelled"] is True
    assert data["records"][0] == {"stage": "sites", "kind": "site", "key": "HQ", "outcome": "created"}
    assert data["records"][2]["error"] == "group VPN-Users not found"

    assert json.loads(report_to_json(report)) == data
    assert yaml.safe_load(report_to_yaml(report)) == data

    target = tmp_path / "out" / "report.json"
    write_report(target, report_to_json(report))
    assert json.loads(target.read_text(encoding="utf-8"))["summary"]["not-found"] == 1
