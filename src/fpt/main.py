from __future__ import annotations

import argparse
import logging
import os
import signal
import threading

from .account import Account
from .bus import Subscription
from .config import AppConfig, load_config
from .errors import AuthenticationError
from .events import format_event_text
from .scheduler import CycleOutcome


EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_AUTH_FAILED = 2


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fpt", description="FunPay session tracker (polling event source)")
    p.add_argument("--config", default=None, help="Path to JSON config file. Defaults to built-in settings")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env FPT_LOG_LEVEL or INFO",
    )

    mode = p.add_mutually_exclusive_group(required=False)
    mode.add_argument("--once", action="store_true", help="Run one poll cycle, print its events and exit")
    mode.add_argument("--daemon", action="store_true", help="Poll until SIGINT/SIGTERM")
    return p


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO


def _consume(subscription: Subscription, logger: logging.Logger) -> None:
    for event in subscription:
        logger.info("event: %s", format_event_text(event))
    if subscription.dropped:
        logger.warning("event consumer fell behind: dropped=%d", subscription.dropped)


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handler(signum: int, _frame: object) -> None:
        logging.getLogger("fpt").info("stop requested: signal=%s", signal.Signals(signum).name)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handler)


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    log_level = _resolve_log_level(args.log_level or os.environ.get("FPT_LOG_LEVEL"))
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("fpt")

    config = load_config(args.config) if args.config else AppConfig.default()
    golden_key = config.resolve_env(config.golden_key_env)
    if not golden_key:
        logger.error("golden key missing: env=%s", config.golden_key_env)
        return EXIT_CONFIG

    mode = "daemon" if args.daemon else "once"
    logger.info("fpt start: mode=%s config=%s", mode, args.config or "<default>")
    logger.info(
        "config: base_url=%s polling_interval_s=%.3f error_retry_delay_s=%.3f capacity=%d max_retries=%d state=%s",
        config.gateway.base_url,
        config.polling_interval_seconds,
        config.error_retry_delay_seconds,
        config.event_channel_capacity,
        config.max_retries,
        config.state.backend,
    )

    account = Account(golden_key, config)
    try:
        account.login()
    except AuthenticationError as e:
        logger.error("login failed: %s", e)
        return EXIT_AUTH_FAILED

    subscription = account.subscribe()

    if not args.daemon:
        report = account.build_scheduler().run_once()
        for event in subscription.drain():
            logger.info("event: %s", format_event_text(event))
        logger.info(
            "once done: outcome=%s attempts=%d events=%d cursor_saved=%s duration_ms=%d",
            report.outcome.value,
            report.attempts,
            report.events_emitted,
            report.cursor_saved,
            report.duration_ms,
        )
        return EXIT_AUTH_FAILED if report.outcome is CycleOutcome.AUTHENTICATION_FAILED else EXIT_OK

    stop = threading.Event()
    _install_signal_handlers(stop)
    consumer = threading.Thread(target=_consume, args=(subscription, logger), name="fpt-consumer", daemon=True)
    consumer.start()

    outcome = account.start_polling_loop(stop)
    account.bus.close()
    consumer.join(timeout=5)
    if outcome.fatal:
        logger.error("polling terminated: reason=%s cycles=%d", outcome.reason.value, outcome.cycles)
        return EXIT_AUTH_FAILED
    logger.info("fpt stopped: cycles=%d", outcome.cycles)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
