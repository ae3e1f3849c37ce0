"""mgotop — a top(1)-style live view of per-collection MongoDB activity.

Samples the ``top`` admin command on a fixed cadence and shows the
namespaces with the largest change since the previous sample.

Usage:
    mgotop
    mgotop -h db1.example.net -p 27018 -k insert -n 10 -s 2
    mgotop -t -k wlock --config path/to/config.toml
"""

from __future__ import annotations

import argparse
import shutil
import sys
import threading
from collections.abc import Callable
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn

from mgotop.config import dump_default_config, load_config
from mgotop.differ import Delta, Mode, diff
from mgotop.drainer import InputDrainer, InputError, suppress_echo
from mgotop.renderer import Renderer
from mgotop.sampler import ConnectError, Sampler, SamplingError, Snapshot


@dataclass
class Settings:
    host: str = "127.0.0.1"
    port: int = 27017
    timeout_ms: int = 5000
    sort_key: str = "total"
    mode: Mode = Mode.COUNT
    limit: int = 20
    interval: float = 1.0
    bold: bool = True
    clamp: bool = False
    suppress_echo: bool = False


# ── Driver ──────────────────────────────────────────────────────────────────


class Top:
    """Owns the sample → diff → render → sleep loop.

    The first sample only establishes a baseline; nothing is drawn until
    the second one.
    """

    def __init__(
        self,
        sampler: Sampler,
        renderer: Renderer,
        settings: Settings,
        drainer: InputDrainer | None = None,
        sleep: Callable[[float], Any] | None = None,
    ):
        self._sampler = sampler
        self._renderer = renderer
        self._settings = settings
        self._drainer = drainer
        self._wake = drainer.failed if drainer is not None else threading.Event()
        self._sleep = sleep or self._wake.wait
        self.prior: Snapshot | None = None
        self.first = True

    def tick(self) -> list[Delta] | None:
        """Run one cycle. Returns the rendered deltas, or None for the baseline."""
        s = self._settings
        current = self._sampler.sample()
        if self.prior is None:
            self.prior = current
            return None

        deltas = diff(self.prior, current, s.sort_key, s.mode, clamp=s.clamp)
        self._renderer.render(deltas, s.sort_key, s.limit, self.first, s.mode)
        self.first = False
        self.prior = current
        return deltas

    def pause(self) -> None:
        """Sleep for the interval; re-raise a failure of the input drainer."""
        self._sleep(self._settings.interval)
        if self._drainer is not None and self._drainer.error is not None:
            raise self._drainer.error

    def run(self) -> NoReturn:
        while True:
            self.tick()
            self.pause()


# ── CLI ─────────────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    # -h is the host, so help is only available as --help
    parser = argparse.ArgumentParser(
        prog="mgotop",
        description="Live per-collection activity of a MongoDB server.",
        add_help=False,
    )
    parser.add_argument("--help", action="help", help="Show this help and exit")
    parser.add_argument(
        "-h", "--host", default=None,
        help="Server hostname, host:port or mongodb:// URI (default: 127.0.0.1)",
    )
    parser.add_argument(
        "-p", "--port", default=None,
        help="Server port (default: 27017)",
    )
    parser.add_argument(
        "-k", dest="sort_key", default=None, metavar="KEY",
        help="Sort key: total, rlock, wlock, query, getmore, insert, update, "
             "remove, command (default: total)",
    )
    parser.add_argument(
        "-t", dest="by_time", action="store_true", default=None,
        help="Sort and display by time (ms) instead of event count",
    )
    parser.add_argument(
        "-n", dest="limit", type=int, default=None,
        help="Number of namespaces to show (default: 20)",
    )
    parser.add_argument(
        "-s", dest="interval", type=float, default=None,
        help="Seconds between frames (default: 1.0)",
    )
    parser.add_argument(
        "--clamp", action="store_true", default=None,
        help="Show negative deltas (server restart) as 0",
    )
    parser.add_argument(
        "--no-echo", dest="suppress_echo", action="store_true", default=None,
        help="Turn off terminal echo while running",
    )
    parser.add_argument(
        "--no-bold", dest="bold", action="store_false", default=None,
        help="Do not embolden the banner",
    )
    parser.add_argument(
        "--config", type=Path, default=None, metavar="PATH",
        help="Path to TOML config file",
    )
    parser.add_argument(
        "--dump-config", action="store_true",
        help="Print the default configuration as TOML and exit",
    )
    return parser


def _pick(flag: Any, configured: Any) -> Any:
    return configured if flag is None else flag


def _number(
    parser: argparse.ArgumentParser, convert: Callable[[Any], Any], name: str, raw: Any
) -> Any:
    # bool is an int subclass; "limit = true" is still a mistake
    if isinstance(raw, bool):
        parser.error(f"invalid {name}: {raw!r}")
    try:
        return convert(raw)
    except (TypeError, ValueError, OverflowError):
        parser.error(f"invalid {name}: {raw!r}")


def _to_millis(raw: Any) -> float:
    # truncated to millisecond precision
    return int(float(raw) * 1000) / 1000


def _flag(parser: argparse.ArgumentParser, name: str, raw: Any) -> bool:
    if not isinstance(raw, bool):
        parser.error(f"invalid {name}: {raw!r} (expected true or false)")
    return raw


def resolve_settings(
    parser: argparse.ArgumentParser,
    args: argparse.Namespace,
    config: dict[str, Any],
) -> Settings:
    """Apply command-line flags over the loaded configuration."""
    server: dict[str, Any] = config.get("server", {})
    display: dict[str, Any] = config.get("display", {})

    port = _number(parser, int, "port", _pick(args.port, server.get("port", 27017)))
    timeout_ms = _number(parser, int, "timeout_ms", server.get("timeout_ms", 5000))
    if timeout_ms < 1:
        parser.error("timeout_ms must be at least 1")

    limit = _number(parser, int, "limit", _pick(args.limit, display.get("limit", 20)))
    if limit < 1:
        parser.error("-n must be at least 1")
    interval = _number(
        parser, _to_millis, "interval", _pick(args.interval, display.get("interval", 1.0))
    )
    if interval <= 0:
        parser.error("-s must be at least 0.001")

    by_time = _flag(parser, "by_time", _pick(args.by_time, display.get("by_time", False)))
    return Settings(
        host=str(_pick(args.host, server.get("host", "127.0.0.1"))),
        port=port,
        timeout_ms=timeout_ms,
        sort_key=str(_pick(args.sort_key, display.get("sort_key", "total"))),
        mode=Mode.TIME if by_time else Mode.COUNT,
        limit=limit,
        interval=interval,
        bold=_flag(parser, "bold", _pick(args.bold, display.get("bold", True))),
        clamp=_flag(
            parser, "clamp_negative", _pick(args.clamp, display.get("clamp_negative", False))
        ),
        suppress_echo=_flag(
            parser,
            "suppress_echo",
            _pick(args.suppress_echo, display.get("suppress_echo", False)),
        ),
    )


def _fatal(kind: str, err: Exception) -> NoReturn:
    print(f"mgotop: {kind}: {err}", file=sys.stderr)
    raise SystemExit(1) from err


def _terminal_columns() -> int:
    return shutil.get_terminal_size().columns


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.dump_config:
        print(dump_default_config(), end="")
        return

    settings = resolve_settings(parser, args, load_config(args.config))

    try:
        sampler = Sampler.connect(settings.host, settings.port, settings.timeout_ms)
    except ConnectError as e:
        _fatal("connect error", e)

    lock = threading.Lock()
    renderer = Renderer(
        bold=settings.bold,
        columns=_terminal_columns if sys.stdout.isatty() else None,
        lock=lock,
    )
    echo = suppress_echo() if settings.suppress_echo else nullcontext(False)

    try:
        with echo as echo_off:
            drainer = InputDrainer(lock=lock, silent=echo_off)
            drainer.start()
            top = Top(sampler, renderer, settings, drainer)
            try:
                top.run()
            except SamplingError as e:
                _fatal("sampling error", e)
            except InputError as e:
                _fatal("input error", e)
    except KeyboardInterrupt:
        print()
        print("mgotop: stopped.", file=sys.stderr)
    finally:
        sampler.close()


if __name__ == "__main__":
    main()
