from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Ensure the repository root (parent of this package) is on ``sys.path``.

    Lets ``python tone_detect/__main__.py`` work as well as ``python -m tone_detect``.
    """
    pkg_dir = Path(__file__).resolve().parent
    repo_root_str = str(pkg_dir.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


if __package__ in (None, ""):
    _ensure_repo_root_on_path()

from tone_detect.app import run  # noqa: E402
from tone_detect.detection_core import ConfigurationError  # noqa: E402
from tone_detect.pitches import parse_note_name  # noqa: E402
from tone_detect.sequencer import TargetChoice  # noqa: E402
from tone_detect.session import DetectionConfig  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    defaults = DetectionConfig()
    parser = argparse.ArgumentParser(prog="tone_detect", description="Target-tone detection drill.")
    parser.add_argument("--trials", type=int, default=defaults.total_trials, help="notes per run")
    parser.add_argument("--targets", type=int, default=defaults.num_targets, help="target notes per run")
    parser.add_argument("--target", default=None, help="fixed target note such as C4 (default: random)")
    parser.add_argument(
        "--no-repeats",
        action="store_true",
        help="avoid the same pitch twice in a row",
    )
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--mute", action="store_true", help="run without audio output")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--max-frames", type=int, default=None, help=argparse.SUPPRESS)
    return parser


def config_from_args(args: argparse.Namespace) -> DetectionConfig:
    target = TargetChoice.random()
    if args.target is not None:
        try:
            target = TargetChoice.fixed(parse_note_name(args.target))
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
    cfg = DetectionConfig(
        total_trials=args.trials,
        num_targets=args.targets,
        allow_immediate_repeat=not args.no_repeats,
        target=target,
    )
    cfg.validate()
    return cfg


def main(argv: list[str] | None = None) -> int:
    """Entry point for running the drill from the command line."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        cfg = config_from_args(args)
    except ConfigurationError as exc:
        parser.error(str(exc))
    return run(config=cfg, seed=args.seed, mute=args.mute, max_frames=args.max_frames)


if __name__ == "__main__":
    raise SystemExit(main())
