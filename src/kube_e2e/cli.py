"""kube-e2e command line entry point."""

import argparse
import sys
from typing import Optional

from kube_e2e.config import load_descriptor, load_settings
from kube_e2e.errors import ConfigurationError
from kube_e2e.log import configure_logging
from kube_e2e.scenario import Environment, SuiteRunner, VerdictStatus
from kube_e2e.scenarios import catalog


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kube-e2e", description="End-to-end validation of a live Kubernetes cluster"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List built-in scenarios")

    run = subparsers.add_parser("run", help="Run scenarios against the current cluster")
    run.add_argument("-c", "--config", help="Settings file (YAML)")
    run.add_argument("-d", "--descriptor", help="Cluster descriptor file (YAML or JSON)")
    run.add_argument(
        "--only", action="append", metavar="NAME", help="Run only this scenario (repeatable)"
    )
    run.add_argument("--log-level", help="Override LOG_LEVEL")
    return parser


def _list() -> int:
    for scn in catalog():
        print(f"{scn.name:32} {scn.description.splitlines()[0] if scn.description else ''}")
    return 0


def _run(args: argparse.Namespace) -> int:
    try:
        settings = load_settings(args.config)
        configure_logging(args.log_level or settings.log_level)
        cluster = load_descriptor(args.descriptor) if args.descriptor else None
        env = Environment.from_settings(settings, cluster)
    except ConfigurationError as e:
        print(f"[kube-e2e] {e}", file=sys.stderr)
        return 2

    scenarios = catalog()
    if args.only:
        unknown = set(args.only) - {s.name for s in scenarios}
        if unknown:
            print(f"[kube-e2e] Unknown scenario(s): {', '.join(sorted(unknown))}", file=sys.stderr)
            return 2

    report = SuiteRunner(env).run(scenarios, only=args.only)
    for name, verdict in report.verdicts.items():
        print(f"{verdict.status.value.upper():5} {name}" + (f": {verdict.reason}" if verdict.reason else ""))
        if verdict.status is VerdictStatus.FAIL:
            for line in verdict.diagnostics:
                print(f"      {line}")
    print(report.summary(), flush=True)
    return 0 if report.passed else 1


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "list":
        return _list()
    return _run(args)


if __name__ == "__main__":
    sys.exit(main())
