#!/usr/bin/env python3
"""
Prometheus exporter for Huawei ONT optical metrics.

This module wires the exporter together: it parses configuration, starts the
background scrape scheduler and serves ``/metrics`` and ``/health`` over HTTP.
Optical readings (TX/RX power, voltage, bias current, temperature) are scraped
from the ONT web UI on a fixed interval; ``/metrics`` always answers with the
last good sample and the scrape counters, even when the device is unreachable.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass
from typing import Mapping, Optional
from wsgiref.simple_server import WSGIRequestHandler, make_server

from prometheus_client import CONTENT_TYPE_LATEST
from prometheus_client.exposition import ThreadingWSGIServer

from huawei_ont_client import DEFAULT_TIMEOUT, OntClient
from huawei_ont_metrics import MetricsStore
from huawei_ont_models import DeviceProfile, HttpOutcome
from huawei_ont_scheduler import ScrapeScheduler
from huawei_ont_utils import normalize_base_url

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

DEFAULT_SCRAPE_INTERVAL = 30
DEFAULT_METRICS_PORT = 8000
DEFAULT_LISTEN_ADDRESS = "0.0.0.0"
HEALTH_BODY = b"OK"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class ExporterConfig:
    ont_url: str
    ont_user: str
    ont_pass: str
    scrape_interval: int = DEFAULT_SCRAPE_INTERVAL
    request_timeout: float = DEFAULT_TIMEOUT
    listen_address: str = DEFAULT_LISTEN_ADDRESS
    metrics_port: int = DEFAULT_METRICS_PORT
    log_level: str = "INFO"
    profile: DeviceProfile = DeviceProfile()

    def __repr__(self) -> str:
        return (f"ExporterConfig(ont_url={self.ont_url!r}, ont_user={self.ont_user!r}, "
                f"scrape_interval={self.scrape_interval}, listen={self.listen_address}:{self.metrics_port})")


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value!r}")
    return number


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}")
    if not number > 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value!r}")
    return number


def _port(value: str) -> int:
    number = _positive_int(value)
    if number > 65535:
        raise argparse.ArgumentTypeError(f"not a valid port: {value!r}")
    return number


def build_arg_parser(environ: Mapping[str, str] = os.environ) -> argparse.ArgumentParser:
    """Argument parser whose defaults come from the environment."""
    profile = DeviceProfile()
    default_ont_url = environ.get("ONT_URL")
    default_ont_user = environ.get("ONT_USER")
    default_ont_pass = environ.get("ONT_PASS")

    parser = argparse.ArgumentParser(
        description="Prometheus exporter for Huawei ONT optical metrics",
        epilog="Environment variables can be used as defaults: "
               "ONT_URL, ONT_USER, ONT_PASS, SCRAPE_INTERVAL, ONT_REQUEST_TIMEOUT, "
               "ONT_LISTEN_ADDRESS, ONT_METRICS_PORT, LOG_LEVEL"
    )
    parser.add_argument(
        "--ont-url",
        default=default_ont_url,
        required=not default_ont_url,
        help="ONT web UI base URL (e.g., http://192.168.100.1) [env: ONT_URL]"
    )
    parser.add_argument(
        "--ont-user",
        default=default_ont_user,
        required=not default_ont_user,
        help="ONT web UI username [env: ONT_USER]"
    )
    parser.add_argument(
        "--ont-pass",
        default=default_ont_pass,
        required=not default_ont_pass,
        help="ONT web UI password [env: ONT_PASS]"
    )
    parser.add_argument(
        "--scrape-interval",
        type=_positive_int,
        default=environ.get("SCRAPE_INTERVAL", str(DEFAULT_SCRAPE_INTERVAL)),
        help=f"Seconds between scrapes (default: {DEFAULT_SCRAPE_INTERVAL}) [env: SCRAPE_INTERVAL]"
    )
    parser.add_argument(
        "--request-timeout",
        type=_positive_float,
        default=environ.get("ONT_REQUEST_TIMEOUT", str(DEFAULT_TIMEOUT)),
        help=f"Timeout for each request to the ONT in seconds (default: {DEFAULT_TIMEOUT}) "
             "[env: ONT_REQUEST_TIMEOUT]"
    )
    parser.add_argument(
        "--listen-address",
        default=environ.get("ONT_LISTEN_ADDRESS", DEFAULT_LISTEN_ADDRESS),
        help=f"Address to serve metrics on (default: {DEFAULT_LISTEN_ADDRESS}) [env: ONT_LISTEN_ADDRESS]"
    )
    parser.add_argument(
        "--metrics-port",
        type=_port,
        default=environ.get("ONT_METRICS_PORT", str(DEFAULT_METRICS_PORT)),
        help=f"Port to expose Prometheus metrics on (default: {DEFAULT_METRICS_PORT}) [env: ONT_METRICS_PORT]"
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=environ.get("LOG_LEVEL", "INFO"),
        choices=LOG_LEVELS,
        help="Logging level (default: INFO) [env: LOG_LEVEL]"
    )

    device = parser.add_argument_group("device profile", "Firmware specific endpoint paths")
    device.add_argument("--token-path", default=environ.get("ONT_TOKEN_PATH", profile.token_path),
                        help="Login token endpoint [env: ONT_TOKEN_PATH]")
    device.add_argument("--login-path", default=environ.get("ONT_LOGIN_PATH", profile.login_path),
                        help="Login endpoint [env: ONT_LOGIN_PATH]")
    device.add_argument("--optic-path", default=environ.get("ONT_OPTIC_PATH", profile.optic_path),
                        help="Optical information page [env: ONT_OPTIC_PATH]")
    device.add_argument("--logout-path", default=environ.get("ONT_LOGOUT_PATH", profile.logout_path),
                        help="Logout endpoint [env: ONT_LOGOUT_PATH]")
    return parser


def parse_config(argv: Optional[list[str]] = None,
                 environ: Mapping[str, str] = os.environ) -> ExporterConfig:
    """Parse command line and environment once; exits with status 2 on missing or malformed values."""
    parser = build_arg_parser(environ)
    args = parser.parse_args(argv)

    # Validate required arguments
    for name in ("ont_url", "ont_user", "ont_pass"):
        if not getattr(args, name):
            flag = "--" + name.replace("_", "-")
            parser.error(f"{flag} is required or set {name.upper()} environment variable")

    # argparse only type-converts string defaults, it does not check them against choices
    if args.log_level not in LOG_LEVELS:
        parser.error(f"invalid log level {args.log_level!r}, choose from {', '.join(LOG_LEVELS)}")

    for name in ("token_path", "login_path", "optic_path", "logout_path"):
        if not getattr(args, name).startswith("/"):
            parser.error(f"--{name.replace('_', '-')} must start with '/'")

    return ExporterConfig(
        ont_url=normalize_base_url(args.ont_url),
        ont_user=args.ont_user,
        ont_pass=args.ont_pass,
        scrape_interval=args.scrape_interval,
        request_timeout=args.request_timeout,
        listen_address=args.listen_address,
        metrics_port=args.metrics_port,
        log_level=args.log_level,
        profile=DeviceProfile(
            token_path=args.token_path,
            login_path=args.login_path,
            optic_path=args.optic_path,
            logout_path=args.logout_path,
        ),
    )


def create_wsgi_app(store: MetricsStore):
    """WSGI application serving ``/metrics`` from ``store`` and a static ``/health``."""

    def respond(start_response, status: str, body: bytes, content_type: str = "text/plain; charset=utf-8",
                extra_headers: Optional[list[tuple[str, str]]] = None, head: bool = False):
        headers = [("Content-Type", content_type), ("Content-Length", str(len(body)))]
        headers.extend(extra_headers or [])
        start_response(status, headers)
        return [b"" if head else body]

    def app(environ, start_response):
        method = environ.get("REQUEST_METHOD", "GET")
        path = environ.get("PATH_INFO", "/")
        head = method == "HEAD"

        if path not in ("/metrics", "/health"):
            store.record_http(HttpOutcome.ERROR)
            return respond(start_response, "404 Not Found", b"Not Found", head=head)

        if method not in ("GET", "HEAD"):
            store.record_http(HttpOutcome.ERROR)
            return respond(start_response, "405 Method Not Allowed", b"Method Not Allowed",
                           extra_headers=[("Allow", "GET, HEAD")])

        if path == "/health":
            store.record_http(HttpOutcome.OK)
            return respond(start_response, "200 OK", HEALTH_BODY, head=head)

        try:
            body = store.render().encode("utf-8")
        except Exception as e:
            logger.error(f"Failed to encode metrics: {e}")
            store.record_http(HttpOutcome.ERROR)
            return respond(start_response, "500 Internal Server Error", b"Failed to encode metrics", head=head)

        store.record_http(HttpOutcome.OK)
        return respond(start_response, "200 OK", body, content_type=CONTENT_TYPE_LATEST, head=head)

    return app


class _DrainingWSGIServer(ThreadingWSGIServer):
    """Threaded server whose ``server_close`` waits for in-flight requests."""
    daemon_threads = False
    block_on_close = True


class _QuietHandler(WSGIRequestHandler):

    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} - {format % args}")


def _handler_for(store: MetricsStore):
    """Request handler that also counts requests rejected before they reach the WSGI app."""

    class _CountingHandler(_QuietHandler):

        def send_error(self, code, message=None, explain=None):
            store.record_http(HttpOutcome.ERROR)
            super().send_error(code, message, explain)

    return _CountingHandler


def make_metrics_server(store: MetricsStore, address: str, port: int) -> _DrainingWSGIServer:
    return make_server(address, port, create_wsgi_app(store),
                       server_class=_DrainingWSGIServer, handler_class=_handler_for(store))


def _shutdown(server: _DrainingWSGIServer, server_thread: threading.Thread, scheduler: ScrapeScheduler,
              request_timeout: float) -> None:
    server.shutdown()
    # waits for in-flight requests
    server.server_close()
    server_thread.join()
    # an in-flight cycle finishes and logs out; logout may take one more request timeout
    scheduler.stop(timeout=scheduler.cycle_timeout + request_timeout)


def create_app(config: ExporterConfig):
    """
    Create and configure the Prometheus metrics exporter.

    Args:
        config: Parsed exporter configuration

    Returns:
        Callable that runs the exporter until SIGINT/SIGTERM
    """

    def app():
        logger.info("Starting Huawei ONT exporter")
        logger.info(f"Target URL: {config.ont_url}")
        logger.info(f"Scrape interval: {config.scrape_interval}s")

        store = MetricsStore()
        client = OntClient(config.ont_url, config.ont_user, config.ont_pass,
                           profile=config.profile,
                           request_timeout=config.request_timeout,
                           on_logout_failure=lambda e: store.record_logout_failure())
        scheduler = ScrapeScheduler(client, store, config.scrape_interval)

        try:
            server = make_metrics_server(store, config.listen_address, config.metrics_port)
        except OSError as e:
            logger.error(f"Failed to start HTTP server on {config.listen_address}:{config.metrics_port}: {e}")
            sys.exit(1)
        logger.info(f"Metrics available at http://{config.listen_address}:{config.metrics_port}/metrics")

        stop = threading.Event()

        def _handle_signal(signum, frame):
            logger.info(f"Received signal {signal.Signals(signum).name}, shutting down exporter")
            stop.set()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

        server_thread = threading.Thread(target=server.serve_forever, name="http-front")
        server_thread.start()
        scheduler.start()

        stop.wait()

        _shutdown(server, server_thread, scheduler, config.request_timeout)
        logger.info("Exporter stopped")

    return app


def main(argv: Optional[list[str]] = None):
    """Main entry point for the Prometheus exporter."""
    config = parse_config(argv)

    # Set logging level
    logging.getLogger().setLevel(getattr(logging, config.log_level))
    logger.debug(f"Configuration: {config!r}")

    # Create and run app
    app = create_app(config)
    app()


if __name__ == "__main__":
    main()
