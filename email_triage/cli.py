from __future__ import annotations

import argparse
import logging
import signal
from typing import Any, List, Optional

from .categorizer import build_categorizer
from .config import DEFAULT_CONFIG_NAME, AppConfig, load_config, write_default_config
from .labels import LabelDefinition, LabelsConfigManager, add_label, remove_label
from .mail_client import create_mail_client
from .triage import render_report, run_once, write_report
from .utils import configure_logging, load_env_file

logger = logging.getLogger("email_triage.cli")


def _print_hints(exc: Exception) -> None:
    message = str(exc)
    if "API key" in message:
        print("Hint: set ANTHROPIC_API_KEY (or OPENAI_API_KEY) in your environment or .env file.")
    if "insufficient" in message.lower() or "ErrorAccessDenied" in message or "403" in message:
        print(
            "Hint: the token is missing a required permission. Delete the token file "
            "(token.json / the MSAL cache) and authenticate again."
        )


def _labels_manager(cfg: AppConfig) -> LabelsConfigManager:
    return LabelsConfigManager(cfg.resolve(cfg.app.labels_path))


def cmd_run(cfg: AppConfig, args: argparse.Namespace) -> int:
    client = create_mail_client(cfg)
    categorizer = build_categorizer(cfg)
    report = run_once(cfg, client, categorizer)
    md = render_report(report, categorizer.label_descriptions())
    report_path = write_report(cfg.resolve(cfg.app.output_dir), "run", md)
    print(f"Report: {report_path}")
    return 0


def cmd_monitor(cfg: AppConfig, args: argparse.Namespace) -> int:
    from .monitor import EmailMonitor

    if not cfg.monitoring.enabled:
        logger.error("Monitoring is disabled. Set [monitoring] enabled = true in %s", DEFAULT_CONFIG_NAME)
        return 1

    client = create_mail_client(cfg)
    categorizer = build_categorizer(cfg)
    categorizer.create_default_config()
    client.initialize()

    monitor = EmailMonitor(
        client,
        categorizer,
        cfg.monitoring,
        last_check_path=cfg.resolve(cfg.monitoring.last_check_path),
    )

    def _shutdown(signum: int, frame: Any) -> None:
        logger.info("Received signal %s, stopping monitor", signum)
        monitor.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    monitor.start()
    return 0


def _register_push(cfg: AppConfig, client: Any) -> None:
    from .webhooks import GmailWatchManager, OutlookSubscriptionManager

    if cfg.email_provider == "gmail" and cfg.webhooks.gmail_topic:
        GmailWatchManager(client).start(cfg.webhooks.gmail_topic)
    elif cfg.email_provider == "outlook" and cfg.webhooks.outlook_notification_url:
        OutlookSubscriptionManager(client).create(
            cfg.webhooks.outlook_notification_url,
            cfg.webhooks.secret,
            cfg.webhooks.subscription_expiration_minutes,
        )


def cmd_serve(cfg: AppConfig, args: argparse.Namespace) -> int:
    from .webhooks import WebhookServer

    if not cfg.webhooks.enabled:
        logger.error("Webhooks are disabled. Set [webhooks] enabled = true in %s", DEFAULT_CONFIG_NAME)
        return 1

    client = create_mail_client(cfg)
    categorizer = build_categorizer(cfg)
    categorizer.create_default_config()
    client.initialize()
    _register_push(cfg, client)
    WebhookServer(client, categorizer, cfg.webhooks).start()
    return 0


def cmd_labels(cfg: AppConfig, args: argparse.Namespace) -> int:
    manager = _labels_manager(cfg)

    if args.labels_cmd == "list":
        for label in manager.load().labels:
            print(f"{label.name}: {label.description or label.prompt}")
        return 0

    if args.labels_cmd == "init":
        if manager.create_default_config():
            print(f"Created {manager.config_path}")
        else:
            print(f"{manager.config_path} already exists")
        return 0

    if args.labels_cmd == "add":
        label = LabelDefinition(args.name, args.prompt, args.description, list(args.example or []), args.color)
        manager.save(add_label(manager.load(), label))
        print(f"Added label {args.name}")
        return 0

    if args.labels_cmd == "remove":
        config = manager.load()
        if args.name not in {label.name for label in config.labels}:
            print(f"No such label: {args.name}")
            return 1
        manager.save(remove_label(config, args.name))
        print(f"Removed label {args.name}")
        return 0

    if args.labels_cmd == "sync":
        client = create_mail_client(cfg)
        client.initialize()
        if cfg.email_provider == "outlook":
            # Outlook categories carry colours, so align existing ones too.
            desired = {
                name: color or cfg.outlook.default_category_color
                for name, color in manager.label_colors().items()
            }
            for name, action in client.graph.ensure_master_categories(desired).items():  # type: ignore[attr-defined]
                print(f"{name}: {action}")
            return 0
        for name, color in manager.label_colors().items():
            label = client.get_or_create_label(name, color)
            print(f"{name}: {label.id}")
        return 0

    raise SystemExit(f"Unknown labels command: {args.labels_cmd}")


def cmd_config(cfg_path: Optional[str], args: argparse.Namespace) -> int:
    path = cfg_path or DEFAULT_CONFIG_NAME
    if write_default_config(path):
        print(f"Created {path}")
    else:
        print(f"{path} already exists")
    return 0


def cmd_watch(cfg: AppConfig, args: argparse.Namespace) -> int:
    from .webhooks import GmailWatchManager, OutlookSubscriptionManager

    client = create_mail_client(cfg)
    client.initialize()

    if cfg.email_provider == "gmail":
        gmail = GmailWatchManager(client)  # type: ignore[arg-type]
        if args.watch_cmd == "start":
            topic = args.topic or cfg.webhooks.gmail_topic
            if not topic:
                print("No Pub/Sub topic: pass --topic or set [webhooks] gmail_topic")
                return 1
            response = gmail.start(topic)
            print(f"Watching (historyId={response.get('historyId')}, expiration={response.get('expiration')})")
            return 0
        if args.watch_cmd == "stop":
            gmail.stop()
            print("Stopped")
            return 0
        print(f"'watch {args.watch_cmd}' is only available for Outlook")
        return 1

    subs = OutlookSubscriptionManager(client)  # type: ignore[arg-type]
    if args.watch_cmd == "start":
        url = args.url or cfg.webhooks.outlook_notification_url
        if not url:
            print("No notification URL: pass --url or set [webhooks] outlook_notification_url")
            return 1
        sub = subs.create(url, cfg.webhooks.secret, cfg.webhooks.subscription_expiration_minutes)
        print(f"{sub.get('id')} expires {sub.get('expirationDateTime')}")
        return 0
    if args.watch_cmd in {"stop", "renew"} and not args.id:
        print(f"'watch {args.watch_cmd}' needs --id for Outlook")
        return 1
    if args.watch_cmd == "stop":
        subs.delete(args.id)
        print(f"Deleted {args.id}")
        return 0
    if args.watch_cmd == "renew":
        sub = subs.renew(args.id, cfg.webhooks.subscription_expiration_minutes)
        print(f"{args.id} expires {sub.get('expirationDateTime')}")
        return 0
    if args.watch_cmd == "list":
        for sub in subs.list():
            print(f"{sub.get('id')}  {sub.get('resource')}  expires {sub.get('expirationDateTime')}")
        return 0
    if args.watch_cmd == "cleanup":
        print(f"Removed {subs.cleanup_expired()} expired subscription(s)")
        return 0

    raise SystemExit(f"Unknown watch command: {args.watch_cmd}")


def _common_options(top_level: bool) -> argparse.ArgumentParser:
    # Options may appear before or after the subcommand; subcommand copies must not
    # reset values given at the top level.
    default = None if top_level else argparse.SUPPRESS
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", "-c", default=default, help=f"path to {DEFAULT_CONFIG_NAME} (or its directory)")
    common.add_argument("-v", "--verbose", action="count", default=0 if top_level else argparse.SUPPRESS)
    return common


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser("email-triage", parents=[_common_options(True)])
    common = _common_options(False)
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run", parents=[common], help="categorize unread mail once")
    sub.add_parser("monitor", parents=[common], help="poll for new mail")
    sub.add_parser("serve", parents=[common], help="run the webhook server")

    p_labels = sub.add_parser("labels", parents=[common], help="manage the labels file")
    labels_sub = p_labels.add_subparsers(dest="labels_cmd", required=True)
    labels_sub.add_parser("list")
    labels_sub.add_parser("init")
    p_add = labels_sub.add_parser("add")
    p_add.add_argument("name")
    p_add.add_argument("prompt")
    p_add.add_argument("--description")
    p_add.add_argument("--example", action="append")
    p_add.add_argument("--color")
    p_remove = labels_sub.add_parser("remove")
    p_remove.add_argument("name")
    labels_sub.add_parser("sync")

    p_config = sub.add_parser("config", parents=[common], help="config file helpers")
    config_sub = p_config.add_subparsers(dest="config_cmd", required=True)
    config_sub.add_parser("init")

    p_watch = sub.add_parser("watch", parents=[common], help="push notification subscriptions")
    p_watch.add_argument("watch_cmd", choices=["start", "stop", "list", "renew", "cleanup"])
    p_watch.add_argument("--topic", help="Gmail Pub/Sub topic")
    p_watch.add_argument("--url", help="Outlook notification URL")
    p_watch.add_argument("--id", help="Outlook subscription id")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_env_file()
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose or 0)

    if args.cmd == "config":
        return cmd_config(args.config, args)

    try:
        cfg = load_config(args.config)
        handler = {
            "run": cmd_run,
            "monitor": cmd_monitor,
            "serve": cmd_serve,
            "labels": cmd_labels,
            "watch": cmd_watch,
        }[args.cmd]
        return handler(cfg, args)
    except Exception as exc:
        logger.error("%s", exc)
        _print_hints(exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
