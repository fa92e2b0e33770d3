"""Command-line entry point for adlab-ctl."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from types import FrameType
from typing import Callable, Sequence

from .config import AppConfig, load_config
from .discovery import fqdn_from_dn_suffix, locate_domain_controllers, resolve_domain_identity
from .engine import Reconciler, configure_logging
from .exporter import report_to_json, report_to_yaml, write_report
from .ldap_client import LdapDirectoryClient
from .models import AdlabCtlError, DesiredState, DiscoveryError, DomainIdentity, Outcome, RunReport
from .renderer import render_report
from .yaml_loader import load_desired_state

LOG = logging.getLogger("adlab_ctl")


def _build_parser() -> argparse.ArgumentParser:
    """Create the CLI parser."""
    parser = argparse.ArgumentParser(description="Build directory exercises from declarative desired state.")
    parser.add_argument("--log-level", help="Override log level (default from config).")

    subparsers = parser.add_subparsers(dest="command", required=True)
    plan_parser = subparsers.add_parser("plan", help="Show what would be created without changing anything.")
    _register_common_arguments(plan_parser)

    apply_parser = subparsers.add_parser("apply", help="Create every missing object.")
    _register_common_arguments(apply_parser)
    apply_parser.add_argument("--yes", action="store_true", help="Skip confirmation prompt.")

    subparsers.add_parser("discover", help="Show the resolved domain identity and controller.")
    return parser


def _register_common_arguments(subparser: argparse.ArgumentParser) -> None:
    """Register arguments shared by plan/apply."""
    subparser.add_argument("--exercise", help="Directory with the desired-state documents (overrides EXERCISE_DIR).")
    subparser.add_argument(
        "-e",
        "--var",
        action="append",
        help="Template variable in KEY=VALUE form. Can be repeated.",
    )
    subparser.add_argument("--json", help="Optional path to write the outcome log as JSON.")
    subparser.add_argument("--yaml", help="Optional path to write the outcome log as YAML.")


def _parse_template_vars(values: list[str] | None) -> dict[str, str]:
    """Convert KEY=VALUE pairs into a dict."""
    result: dict[str, str] = {}
    if not values:
        return result
    for value in values:
        if "=" not in value:
            raise AdlabCtlError(f"Invalid template var '{value}', expected KEY=VALUE.")
        key, val = value.split("=", 1)
        result[key] = val
    return result


def _locate_server(config: AppConfig) -> str:
    """Return the configured DC or the first one advertised in DNS."""
    if config.ldap.server:
        return config.ldap.server
    fqdn = config.domain_fqdn or fqdn_from_dn_suffix(config.domain_dn_suffix)
    if not fqdn:
        raise DiscoveryError("Set LDAP_SERVER, or DOMAIN_FQDN so a controller can be located.")
    locations = locate_domain_controllers(fqdn, nameserver=config.dns_resolver, timeout=config.ldap.timeout)
    if not locations:
        raise DiscoveryError(f"No domain controller advertised for {fqdn}.")
    LOG.info("Using domain controller %s", locations[0].host)
    return locations[0].host


def _connect(config: AppConfig) -> tuple[LdapDirectoryClient, DomainIdentity]:
    """Bind to the directory and resolve the domain identity."""
    client = LdapDirectoryClient.connect(config.ldap, server=_locate_server(config))
    domain = resolve_domain_identity(config, naming_context=client.naming_context)
    client.use_domain(domain)
    return client, domain


def _emit_report(report: RunReport, config: AppConfig, args: argparse.Namespace) -> None:
    """Print a human-friendly report, optionally writing JSON/YAML."""
    print(render_report(report, config.templates_dir))
    if getattr(args, "json", None):
        write_report(Path(args.json), report_to_json(report))
        print(f"Wrote outcome log JSON to {args.json}")
    if getattr(args, "yaml", None):
        write_report(Path(args.yaml), report_to_yaml(report))
        print(f"Wrote outcome log YAML to {args.yaml}")


def _confirm(domain: DomainIdentity) -> bool:
    """Prompt the operator to confirm apply."""
    prompt = f"Apply changes to {domain.fqdn}? [y/N]: "
    response = input(prompt).strip().lower()  # noqa: S322
    return response in {"y", "yes"}


def _stop_on_interrupt() -> Callable[[], bool]:
    """Turn Ctrl-C into a request to stop between stages."""
    requested = threading.Event()

    def _handler(signum: int, frame: FrameType | None) -> None:
        LOG.warning("Interrupt received; stopping after the current stage.")
        requested.set()

    signal.signal(signal.SIGINT, _handler)
    return requested.is_set


def _prepare(config: AppConfig, args: argparse.Namespace) -> tuple[LdapDirectoryClient, DomainIdentity, DesiredState]:
    """Connect, resolve the domain and load the exercise."""
    client, domain = _connect(config)
    exercise_dir = Path(args.exercise).resolve() if args.exercise else config.exercise_dir
    desired = load_desired_state(exercise_dir, domain, _parse_template_vars(args.var))
    return client, domain, desired


def _run_plan(config: AppConfig, args: argparse.Namespace) -> RunReport:
    """Execute the plan command."""
    client, domain, desired = _prepare(config, args)
    report = Reconciler(client).plan(desired, domain)
    _emit_report(report, config, args)
    return report


def _run_apply(config: AppConfig, args: argparse.Namespace) -> RunReport:
    """Execute the apply command."""
    client, domain, desired = _prepare(config, args)
    plan = Reconciler(client).plan(desired, domain)
    _emit_report(plan, config, args)
    planned = plan.counts().get(Outcome.PLANNED, 0)
    if not planned:
        print("No changes planned.")
        return plan
    if not args.yes and not _confirm(domain):
        LOG.info("Apply aborted by user.")
        return plan
    report = Reconciler(client, should_stop=_stop_on_interrupt()).apply(desired, domain)
    _emit_report(report, config, args)
    return report


def _run_discover(config: AppConfig) -> None:
    """Execute the discover command."""
    server = _locate_server(config)
    client = LdapDirectoryClient.connect(config.ldap, server=server)
    domain = resolve_domain_identity(config, naming_context=client.naming_context)
    print(f"Domain: {domain.fqdn}")
    print(f"DN suffix: {domain.dn_suffix}")
    print(f"Controller: {server}")


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    exit_code = 0
    try:
        config = load_config()
        configure_logging(args.log_level or config.log_level)
        if args.command == "plan":
            report = _run_plan(config, args)
            exit_code = 1 if report.has_failures() else 0
        elif args.command == "apply":
            report = _run_apply(config, args)
            exit_code = 1 if report.has_failures() else 0
        elif args.command == "discover":
            _run_discover(config)
        else:  # pragma: no cover - argparse ensures we never reach here
            parser.error(f"Unsupported command {args.command}")
    except AdlabCtlError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    except Exception as exc:  # noqa: BLE001
        print(f"Unexpected error: {exc}", file=sys.stderr)
        sys.exit(3)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
