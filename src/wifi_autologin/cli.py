from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .backoff import BackoffPolicy
from .config import AppConfig, PortalConfig, load_config, parse_extra_fields
from .logging_config import configure_logging
from .notifier import DesktopNotifier, LoggingNotifier, Notifier
from .portal import (
    CreatedSessionRegistry,
    CredentialInjector,
    FieldDetector,
    FieldHeuristics,
    KeepaliveClassifier,
    SessionOrchestrator,
)
from .portal.playwright_port import PlaywrightSessionPort
from .probe import ConnectivityProbe
from .scheduler import RemediationScheduler
from .service import AutoLoginService
from .state import ConfigStore


logger = logging.getLogger("wifi_autologin")

# Defaults of the typical FortiGate-style captive portal this tool was first written for.
DEFAULT_LOGIN_URL = "http://172.16.2.1:1000"
DEFAULT_USER_FIELD = "username"
DEFAULT_PASS_FIELD = "password"


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="wifi-autologin")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )
    p.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")

    sub = p.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Watch connectivity and log into the captive portal whenever it intercepts")
    run.add_argument("--headful", action="store_true", help="Run browser headful (debug)")
    run.add_argument(
        "--no-watch",
        action="store_true",
        help=(
            "Do not react to page loads at the portal origin; rely on the periodic check only. "
            "Only pages in the engine's own browser context are watched, not your everyday browser."
        ),
    )

    login_now = sub.add_parser("login-now", help="Run one forced login attempt and exit (0 on success)")
    login_now.add_argument("--headful", action="store_true", help="Run browser headful (debug)")

    sub.add_parser("probe", help="Check connectivity once (exit 0 if the internet is reachable)")

    save = sub.add_parser("save-config", help="Remember portal credentials in the config store")
    save.add_argument("--login-url", default=DEFAULT_LOGIN_URL, help=f"Portal login URL (default: {DEFAULT_LOGIN_URL})")
    save.add_argument("--user-field", default=DEFAULT_USER_FIELD, help="Name or id of the username input")
    save.add_argument("--pass-field", default=DEFAULT_PASS_FIELD, help="Name or id of the password input")
    save.add_argument("--username", default="", help="Portal username (default: PORTAL_USERNAME)")
    save.add_argument(
        "--password",
        default="",
        help="Portal password (default: PORTAL_PASSWORD, else prompt). Avoid on shared machines: visible in ps.",
    )
    save.add_argument("--extra-fields", default="", help='Extra form fields as JSON, e.g. \'{"mode": "191"}\'')

    sub.add_parser("clear-config", help="Forget the remembered portal credentials")
    sub.add_parser("show-config", help="Print the remembered portal config (password hidden)")

    return p


def _build_service(cfg: AppConfig, port: PlaywrightSessionPort) -> AutoLoginService:
    heuristics = FieldHeuristics.from_config(cfg.heuristics)
    probe = ConnectivityProbe(cfg.probe)
    orchestrator = SessionOrchestrator(
        port,
        probe,
        cfg=cfg.engine,
        heuristics=heuristics,
        detector=FieldDetector(port, heuristics),
        injector=CredentialInjector(port, heuristics),
        registry=CreatedSessionRegistry(),
    )
    notifier: Notifier = DesktopNotifier() if cfg.notifications.desktop else LoggingNotifier()
    scheduler = RemediationScheduler(
        probe=probe,
        orchestrator=orchestrator,
        classifier=KeepaliveClassifier(port, heuristics),
        notifier=notifier,
        policy=BackoffPolicy(cfg.backoff),
        cfg=cfg.engine,
    )
    return AutoLoginService(
        scheduler,
        store=ConfigStore(cfg.store.path),
        check_interval_seconds=cfg.engine.check_interval_seconds,
    )


async def _run(cfg: AppConfig, *, watch: bool) -> None:
    async with PlaywrightSessionPort(cfg.browser, navigation_timeout_ms=cfg.engine.load_timeout_ms) as port:
        service = _build_service(cfg, port)
        service.load_persisted(fallback=cfg.portal)
        if watch:
            port.watch_page_loads(
                lambda origin: service.spawn(service.report_portal_observed(origin), name="portal-observed")
            )
        try:
            await service.run_forever()
        finally:
            service.stop()
            await service.drain()


async def _login_now(cfg: AppConfig) -> bool:
    async with PlaywrightSessionPort(cfg.browser, navigation_timeout_ms=cfg.engine.load_timeout_ms) as port:
        service = _build_service(cfg, port)
        service.load_persisted(fallback=cfg.portal)
        resp = await service.trigger_login_now()
        logger.info("Login attempt finished (ok=%s outcome=%s)", resp.ok, resp.outcome.value if resp.outcome else None)
        return resp.ok


def _portal_from_args(args: argparse.Namespace) -> PortalConfig:
    username = args.username or os.getenv("PORTAL_USERNAME", "")
    password = args.password or os.getenv("PORTAL_PASSWORD", "")
    if not username:
        raise SystemExit("Missing username. Pass --username or set PORTAL_USERNAME.")
    if not password:
        if not sys.stdin.isatty():
            raise SystemExit("Missing password. Pass --password or set PORTAL_PASSWORD.")
        password = getpass.getpass("Portal password: ")
    try:
        extra = parse_extra_fields(args.extra_fields or os.getenv("PORTAL_EXTRA_FIELDS", ""))
    except ValueError as e:
        raise SystemExit(str(e)) from e
    return PortalConfig(
        login_url=args.login_url,
        user_field=args.user_field,
        pass_field=args.pass_field,
        username=username,
        password=password,
        extra_fields=extra,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    cfg = load_config(args.config)
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path)

    if args.cmd == "run":
        if args.headful:
            cfg.browser.headless = False
        logger.info("Starting auto-login (store=%s)", cfg.store.path)
        try:
            asyncio.run(_run(cfg, watch=not args.no_watch))
        except KeyboardInterrupt:
            logger.info("Stopped by user.")
            return 130
        return 0

    if args.cmd == "login-now":
        if args.headful:
            cfg.browser.headless = False
        return 0 if asyncio.run(_login_now(cfg)) else 1

    if args.cmd == "probe":
        up = asyncio.run(ConnectivityProbe(cfg.probe).is_internet_up())
        print("up" if up else "down (intercepted or offline)")
        return 0 if up else 1

    if args.cmd == "save-config":
        portal = _portal_from_args(args)
        ConfigStore(cfg.store.path).save(portal)
        logger.info("Saved portal config for %s to %s", portal.origin, cfg.store.path)
        return 0

    if args.cmd == "clear-config":
        ConfigStore(cfg.store.path).clear()
        return 0

    if args.cmd == "show-config":
        stored = ConfigStore(cfg.store.path).load()
        if stored is None:
            print("No portal config stored.")
            return 1
        print(stored.model_dump_json(indent=2, exclude={"password"}))
        return 0

    raise SystemExit(f"Unknown command: {args.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
