from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Sequence

from .config import config_sha256, load_config, resolve_runtime_secrets
from .errors import ConfigError, InvalidSourceURL, NoMediaFound
from .extractor import MediaExtractor
from .media import StrategyOutcome, response_envelope
from .results import NO_MEDIA_MESSAGE
from .run_log import RunLogger


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ig_media")

    subparsers = parser.add_subparsers(dest="command", required=True)

    ext = subparsers.add_parser(
        "extract",
        help="Extract media URLs and metadata for one Instagram post URL.",
    )
    ext.add_argument("url", help="Post, reel, IGTV or story URL.")
    ext.add_argument(
        "--config",
        default=None,
        help="Path to YAML config file (defaults apply when omitted).",
    )
    ext.add_argument(
        "--log",
        default=None,
        help="Write JSONL events to this path ('-' for stderr).",
    )
    ext.add_argument(
        "--offline",
        action="store_true",
        help="Serve a canned post page instead of calling the network.",
    )
    ext.add_argument(
        "--require-media",
        action="store_true",
        help="Exit non-zero when no media URL could be extracted.",
    )
    ext.add_argument(
        "--indent",
        type=int,
        default=2,
        help="JSON indentation for the printed envelope.",
    )
    ext.set_defaults(_handler=_cmd_extract)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _print_json(payload: dict[str, Any], *, indent: int) -> None:
    print(json.dumps(payload, indent=indent if indent > 0 else None, ensure_ascii=False))


def _open_log(target: str | None) -> RunLogger | None:
    if not target:
        return None
    if target == "-":
        return RunLogger(stream=sys.stderr)
    return RunLogger.open(target, overwrite=False)


def _cmd_extract(args: argparse.Namespace) -> int:
    log = _open_log(args.log)
    if log is None:
        return _run_extract(args, None)

    with log:
        log.info(
            "extract_started",
            url=str(args.url),
            config_path=str(args.config) if args.config else None,
            offline=bool(args.offline),
        )
        try:
            return _run_extract(args, log)
        except NoMediaFound:
            # Already logged as extract_completed.
            raise
        except Exception as e:
            log.exception("extract_failed", exc=e, url=str(args.url))
            raise


def _run_extract(args: argparse.Namespace, log: RunLogger | None) -> int:
    url = str(args.url)
    cfg = load_config(args.config)

    if bool(getattr(args, "offline", False)):
        from .offline import OfflineHttpClient

        http = OfflineHttpClient()
        # Offline runs never reach Apify.
        cfg = cfg.model_copy(update={"apify": cfg.apify.model_copy(update={"enabled": False})})
        secrets = None
    else:
        http = None
        secrets = resolve_runtime_secrets(cfg)

    def _on_outcome(outcome: StrategyOutcome) -> None:
        if log is not None:
            log.strategy_outcome(outcome, url=url)

    if log is not None:
        log.info(
            "config_loaded",
            config_sha256=config_sha256(cfg),
            strategies=list(cfg.chain.strategies),
            apify_enabled=cfg.apify.enabled,
        )

    extractor = MediaExtractor(cfg, http=http, secrets=secrets, on_outcome=_on_outcome)
    try:
        result = extractor.extract(url)
    except InvalidSourceURL as e:
        if log is not None:
            log.error("extract_failed", url=url, error=str(e))
        _print_json(response_envelope(error=str(e)), indent=args.indent)
        return 2

    if log is not None:
        log.info(
            "extract_completed",
            url=result.source_url,
            strategy=result.strategy,
            media_count=len(result.media),
            error=result.error,
        )

    _print_json(response_envelope(result=result), indent=args.indent)

    if args.require_media and not result.has_media:
        raise NoMediaFound(result.error or NO_MEDIA_MESSAGE)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except ConfigError as e:
        _eprint(str(e))
        return 2
    except NoMediaFound as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
