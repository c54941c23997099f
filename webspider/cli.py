import argparse
import logging
import sys
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .client import FetchScheduler
from .errors import ConfigurationError, InvalidUrlError
from .linkchecker import Linkchecker
from .mirror import Webmirror
from .settings import ClientSettings, MirrorSettings, SpiderSettings, load_config_file
from .urlfilter import UrlFilter

CONFIG_GROUPS = ("general", "client", "filter", "mirror")


# -------------------- CLI --------------------


def add_common_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("url", help="absolute http(s) start URL")
    p.add_argument("--verbose", action="store_true", help="debug logging")

    # client
    p.add_argument("--concurrency", type=int, default=4, help="parallel requests")
    p.add_argument("--timeout", type=float, default=15.0, help="request timeout seconds")
    p.add_argument("--method", type=str, default="GET", help="HTTP method")
    p.add_argument("--retries", type=int, default=3, help="transport retries per request")

    # filter
    p.add_argument(
        "--allow-host",
        action="append",
        default=[],
        help="additional host to fetch from",
    )
    p.add_argument(
        "--reject-path",
        action="append",
        default=[],
        help="do not fetch URLs whose path matches regex",
    )
    p.add_argument(
        "--reject-param",
        action="append",
        default=[],
        help="do not fetch URLs with query parameter 'name' or 'name=value'",
    )
    p.add_argument(
        "--keep-fragment",
        action="store_true",
        help="treat URLs differing in #fragment as distinct",
    )


def build_arg_parser(defaults: Optional[Dict[str, Any]] = None) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="webspider",
        description="Mirror a web site or check it for broken links.",
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)
    sub = p.add_subparsers(dest="command", required=True)

    mirror = sub.add_parser("mirror", help="mirror one host into a directory")
    add_common_arguments(mirror)
    mirror.add_argument("output_dir", help="output directory")
    mirror.add_argument(
        "--additional-url",
        action="append",
        default=[],
        help="extra start URL on the same host",
    )
    mirror.add_argument(
        "--track-slash-redirects",
        action="store_true",
        help="symlink /dir to /dir/ when the server redirects",
    )
    mirror.add_argument(
        "--rewrite-links",
        action="store_true",
        help="make same-host links in saved HTML/CSS host relative",
    )

    check = sub.add_parser("check-links", help="report 404 links per page")
    add_common_arguments(check)

    if defaults:
        mirror.set_defaults(**defaults)
        check.set_defaults(**defaults)
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", type=str, default=None)
    preliminary, _ = pre.parse_known_args(argv)
    flat: Dict[str, Any] = {}
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        if isinstance(cfg, dict):
            flat = {k: v for k, v in cfg.items() if not isinstance(v, dict)}
            for g in CONFIG_GROUPS:
                if isinstance(cfg.get(g), dict):
                    flat.update(cfg[g])
            flat = {k.replace("-", "_"): v for k, v in flat.items()}
    return build_arg_parser(flat).parse_args(argv)


def configure_filter(url_filter: UrlFilter, args: argparse.Namespace) -> UrlFilter:
    for host in args.allow_host or []:
        url_filter.add_allowed_host(host)
    for regex in args.reject_path or []:
        url_filter.reject_path_by_regex(regex)
    for param in args.reject_param or []:
        name, sep, value = param.partition("=")
        url_filter.reject_by_queryparam(name.strip(), value if sep else None)
    return url_filter


def main(argv: Optional[List[str]] = None) -> None:
    try:
        args = parse_args(argv)
    except ConfigurationError as e:
        print(f"Invalid config: {e}")
        sys.exit(2)
    if urlparse(args.url).scheme not in {"http", "https"}:
        print("Invalid URL. Use http:// or https://")
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    try:
        client = FetchScheduler(
            ClientSettings(
                concurrency=args.concurrency,
                method=args.method,
                timeout=args.timeout,
                retries=args.retries,
            )
        )
        spider_settings = SpiderSettings(discard_fragment=not args.keep_fragment)
        if args.command == "mirror":
            spider = Webmirror(
                MirrorSettings(
                    output_dir=args.output_dir,
                    additional_urls=args.additional_url or [],
                    track_slash_redirects=args.track_slash_redirects,
                    rewrite_links=args.rewrite_links,
                ),
                client,
                spider_settings,
            )
        else:
            spider = Linkchecker(client, spider_settings)
        configure_filter(spider.url_filter_fetch, args)
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}")
        sys.exit(2)

    try:
        spider.crawl(args.url)
    except InvalidUrlError as e:
        print(f"Invalid URL. Use http:// or https:// ({e})")
        sys.exit(1)
    except KeyboardInterrupt:
        logging.warning("Interrupted.")
        sys.exit(130)

    print(f"Requests sent: {client.requests_sent}")
    if isinstance(spider, Webmirror):
        engine = spider.save_engine
        print("Mirroring complete")
        print(f"Files written: {engine.files_written}, linked: {engine.files_linked}")
        print(f"Root: {engine.output_dir}")
        return
    report = spider.report_broken_links()
    for page, links in report.items():
        print(f"Broken links on page `{page}`: {', '.join(links)}")
    if spider.broken_links:
        sys.exit(1)
