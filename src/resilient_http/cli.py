"""Command line fetcher for ad-hoc requests and downloads."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import BinaryIO

from .client import HttpClient
from .envelope import ResponseEnvelope
from .exceptions import ConfigurationError
from .logging import configure_logging
from .methods import HttpMethod
from .request_options import RequestOptions
from .sink import StreamingSink


def _parse_header(value: str) -> tuple[str, str]:
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected NAME:VALUE, got {value!r}")
    return name.strip(), header_value.strip()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="resilient-http", description="Fetch a URL with retries and timeouts.")
    parser.add_argument("url")
    parser.add_argument("--method", default="GET", type=str.upper, choices=[m.value for m in HttpMethod])
    parser.add_argument("--data", help="JSON request body")
    parser.add_argument("--header", action="append", default=[], type=_parse_header, metavar="NAME:VALUE")
    parser.add_argument("--output", type=Path, help="write the body to this file instead of stdout")
    parser.add_argument("--stream", action="store_true", help="stream the body chunk by chunk")
    parser.add_argument("--timeout", type=float)
    parser.add_argument("--connection-timeout", type=float)
    parser.add_argument("--retries", type=int)
    parser.add_argument("--retry-delay-ms", type=int)
    parser.add_argument("--exponential", action="store_true", help="exponential retry backoff")
    parser.add_argument("--cache", action="store_true", help="allow cached responses")
    parser.add_argument("--json-logs", action="store_true")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def _options(args: argparse.Namespace) -> RequestOptions:
    base = RequestOptions.for_large_download() if args.stream else RequestOptions()
    options = RequestOptions.from_env(base)
    if args.timeout is not None:
        options = options.with_timeout(args.timeout)
    if args.connection_timeout is not None:
        options = options.with_connection_timeout(args.connection_timeout)
    elif options.connection_timeout > options.timeout:
        options = options.with_connection_timeout(options.timeout)
    if args.retries is not None:
        options = options.with_max_retries(args.retries)
    if args.retry_delay_ms is not None:
        options = options.with_retry_delay(args.retry_delay_ms)
    if args.exponential:
        options = options.with_exponential_backoff()
    if args.cache:
        options = options.with_caching()
    return options.validate()


def _build_client(options: RequestOptions) -> HttpClient:
    return HttpClient(default_options=options)


def _print_progress(received: int, total: int) -> None:
    if total > 0:
        print(f"\r{received}/{total} bytes ({received * 100 // total}%)", end="", file=sys.stderr, flush=True)
    else:
        print(f"\r{received} bytes", end="", file=sys.stderr, flush=True)


async def _stream(client: HttpClient, args: argparse.Namespace, target: BinaryIO) -> ResponseEnvelope:
    sink: StreamingSink

    def write_chunk(chunk: bytes) -> None:
        # First chunk of a session: a retried attempt starts the file over.
        if sink.total_bytes_received == len(chunk) and target.seekable():
            target.seek(0)
            target.truncate()
        target.write(chunk)

    sink = StreamingSink(write_chunk, _print_progress)
    envelope = await client.stream(args.url, sink, method=args.method, headers=args.header)
    print(file=sys.stderr)
    return envelope


async def _run(args: argparse.Namespace) -> int:
    options = _options(args)
    if args.stream and args.data is not None:
        raise ConfigurationError("--data cannot be combined with --stream")
    body = None
    if args.data is not None:
        try:
            body = json.loads(args.data)
        except ValueError as exc:
            raise ConfigurationError(f"--data is not valid JSON: {exc}", cause=exc) from exc

    async with _build_client(options) as client:
        if args.stream:
            if args.output is None:
                envelope = await _stream(client, args, sys.stdout.buffer)
            else:
                with args.output.open("wb") as target:
                    envelope = await _stream(client, args, target)
        else:
            envelope = await client.request(args.method, args.url, json_data=body, headers=args.header)
            if envelope.is_success and envelope.data is not None:
                if args.output is not None:
                    envelope.save_to_file(args.output)
                else:
                    sys.stdout.buffer.write(envelope.data)
                    sys.stdout.buffer.flush()

    print(envelope, file=sys.stderr)
    return 0 if envelope.is_success else 1


def _main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        json_format=args.json_logs,
    )
    try:
        return asyncio.run(_run(args))
    except ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


def main() -> None:
    raise SystemExit(_main())
