"""Main entry point for MarketFlow.

Commands:
  run       keep the scheduler running in the foreground
  generate  produce one report now
  show      print a stored report
  config    show or change the automation settings
"""

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from .config import AppConfig, load_config
from .dashboard import Dashboard, default_kind
from .models import Report, ReportKind, ReportStatus, ScheduleConfig
from .output import render_markdown, save_report

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging to stdout."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # openai/httpx request logs are noisy at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _kind(value: str) -> ReportKind:
    return ReportKind(value.upper())


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def _run_forever(dashboard: Dashboard, force_active: bool) -> None:
    config = dashboard.read_config()
    if force_active and not config.active:
        await dashboard.update_config(config.model_copy(update={"active": True}))
    await dashboard.start()

    config = dashboard.read_config()
    if not config.active:
        logger.warning("Automation is paused; enable it with `config set --active` or `run --active`")
    logger.info(
        "Morning report at %s, evening report at %s, email: %s",
        config.morning_time, config.evening_time, config.delivery_email or "-",
    )
    logger.info("Note: reports are only generated while this process is running")

    try:
        await asyncio.Event().wait()
    finally:
        await dashboard.stop()


def cmd_run(dashboard: Dashboard, args: argparse.Namespace, app_config: AppConfig) -> int:
    try:
        asyncio.run(_run_forever(dashboard, args.active))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


def cmd_generate(dashboard: Dashboard, args: argparse.Namespace, app_config: AppConfig) -> int:
    kind = _kind(args.kind) if args.kind else default_kind_now(dashboard)
    report = asyncio.run(dashboard.trigger_manual(kind))
    if report is None:
        logger.error("Another generation is already running")
        return 1

    print(render_markdown(report))
    if report.status is ReportStatus.FAILED:
        return 1
    if args.save:
        save_report(report, output_dir=app_config.output.dir)
    return 0


def cmd_show(dashboard: Dashboard, args: argparse.Namespace, app_config: AppConfig) -> int:
    kind = _kind(args.kind) if args.kind else default_kind_now(dashboard)
    report: Report | None = dashboard.load_saved_report(kind, args.date)
    if report is None:
        print(f"No {kind.value.lower()} report stored for {args.date or 'today'}.")
        return 1
    print(render_markdown(report))
    return 0


def cmd_config(dashboard: Dashboard, args: argparse.Namespace, app_config: AppConfig) -> int:
    config = dashboard.read_config()
    if args.action == "set":
        update: dict = {}
        if args.morning is not None:
            update["morning_time"] = args.morning
        if args.evening is not None:
            update["evening_time"] = args.evening
        if args.email is not None:
            update["delivery_email"] = args.email
        if args.active is not None:
            update["active"] = args.active
        # Re-validate through the model so bad times are rejected
        try:
            config = ScheduleConfig.model_validate({**config.model_dump(), **update})
        except ValidationError as e:
            logger.error("Invalid schedule config: %s", e)
            return 2
        asyncio.run(_save_config(dashboard, config))
        logger.info("Schedule config saved")

    print(config.model_dump_json(indent=2))
    return 0


async def _save_config(dashboard: Dashboard, config: ScheduleConfig) -> None:
    # A running `run` process picks the change up through its config watcher
    await dashboard.update_config(config)
    await dashboard.stop()


def default_kind_now(dashboard: Dashboard) -> ReportKind:
    return default_kind(dashboard.clock())


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MarketFlow - scheduled AI market briefings")
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to config.yaml (default: config.yaml)",
    )
    parser.add_argument("--store", help="Path to the JSON store (overrides storage.path)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p_run = sub.add_parser("run", help="Run the scheduler in the foreground")
    p_run.add_argument("--active", action="store_true", help="Enable automation before starting")
    p_run.set_defaults(func=cmd_run)

    kinds = ["morning", "evening"]
    p_gen = sub.add_parser("generate", help="Generate one report now")
    p_gen.add_argument("kind", nargs="?", choices=kinds, help="Defaults to the time of day")
    p_gen.add_argument("--save", action="store_true", help="Also write Markdown to output dir")
    p_gen.set_defaults(func=cmd_generate)

    p_show = sub.add_parser("show", help="Print a stored report")
    p_show.add_argument("kind", nargs="?", choices=kinds)
    p_show.add_argument("--date", help="Day key YYYY-MM-DD (default: today)")
    p_show.set_defaults(func=cmd_show)

    p_cfg = sub.add_parser("config", help="Show or change automation settings")
    p_cfg.add_argument("action", choices=["show", "set"], nargs="?", default="show")
    p_cfg.add_argument("--morning", help="Morning report time HH:mm")
    p_cfg.add_argument("--evening", help="Evening report time HH:mm")
    p_cfg.add_argument("--email", help="Delivery email (empty string clears it)")
    p_cfg.add_argument("--active", dest="active", action="store_true", default=None)
    p_cfg.add_argument("--inactive", dest="active", action="store_false")
    p_cfg.set_defaults(func=cmd_config)

    return parser


def cli(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    app_config, settings = load_config(args.config)
    if args.store:
        app_config.storage.path = args.store
    dashboard = Dashboard.from_config(app_config, settings)
    return args.func(dashboard, args, app_config)


def main() -> None:
    sys.exit(cli())


if __name__ == "__main__":
    main()
