"""
Replay Engine - command line entry point.

    python -m replay_engine record https://example.com --output login.json
    python -m replay_engine play login.json --var username=alice
    python -m replay_engine snapshot https://example.com
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .config import EngineConfig, load_config
from .core.browser_session import BrowserSession
from .core.executor import ReplayExecutor
from .core.models import Script
from .core.player import ScriptPlayer
from .core.recorder import Recorder
from .core.timeline_store import JsonFilePersistence, TimelineStore
from .utils.js_helpers import format_error_message
from .utils.logger_config import configure_logger

logger = logging.getLogger(__name__)


@dataclass
class Args:
    """Command line arguments."""
    command: str
    target: Optional[str]
    headless: Optional[bool]
    output: Optional[str] = None
    session: Optional[str] = None
    duration: Optional[float] = None
    variables: Dict[str, str] = field(default_factory=dict)
    continue_on_error: bool = False


def _parse_variables(pairs: List[str], parser: argparse.ArgumentParser) -> Dict[str, str]:
    variables: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            parser.error(f"--var expects NAME=VALUE, got '{pair}'")
        variables[name] = value
    return variables


def parse_args(argv: Optional[List[str]] = None) -> Args:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="replay-engine",
        description="Record browser sessions into timelines and replay them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  replay-engine record https://example.com --output login.json
  replay-engine play login.json --var username=alice --headless
  replay-engine snapshot https://example.com
  replay-engine config-check
        """
    )
    parser.add_argument(
        "command",
        choices=["record", "play", "snapshot", "config-check"],
        help="What to do"
    )
    parser.add_argument(
        "target",
        nargs="?",
        help="URL for record/snapshot, script file for play"
    )
    parser.add_argument(
        "--headless",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Override BROWSER_HEADLESS"
    )
    parser.add_argument(
        "--output",
        help="Write the recorded script to this JSON file"
    )
    parser.add_argument(
        "--session",
        help="Recording session id (defaults to a random id)"
    )
    parser.add_argument(
        "--duration",
        type=float,
        help="Stop recording after this many seconds instead of waiting for Enter"
    )
    parser.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Script variable, may be repeated"
    )
    parser.add_argument(
        "--continue-on-error",
        action="store_true",
        help="Keep playing after an execution failure"
    )

    args = parser.parse_args(argv)

    if args.command != "config-check" and not args.target:
        parser.error(f"'{args.command}' needs a target")

    return Args(
        command=args.command,
        target=args.target,
        headless=args.headless,
        output=args.output,
        session=args.session,
        duration=args.duration,
        variables=_parse_variables(args.var, parser),
        continue_on_error=args.continue_on_error,
    )


def _browser_session(config: EngineConfig, headless: Optional[bool]) -> BrowserSession:
    browser_config = config.browser
    if headless is not None:
        browser_config = browser_config.model_copy(update={"headless": headless})
    return BrowserSession(browser_config)


async def record(args: Args, config: EngineConfig) -> int:
    store = TimelineStore(JsonFilePersistence(config.recorder.timelines_dir))
    recorder = Recorder(store, config.recorder)

    async with _browser_session(config, False if args.headless is None else args.headless) as session:
        page = await session.open_page("")
        session_id = await recorder.start(page, args.target, session_id=args.session)

        if args.duration:
            await asyncio.sleep(args.duration)
        else:
            await asyncio.get_running_loop().run_in_executor(None, input, "Recording... press Enter to stop\n")

        actions = await recorder.stop()

    print(f"Recorded {len(actions)} actions (session {session_id})")
    if args.output:
        script = Script(name=Path(args.output).stem, url=args.target, actions=actions)
        Path(args.output).write_text(script.model_dump_json(indent=2, exclude_none=True), encoding="utf-8")
        print(f"Script saved to {args.output}")
    return 0


async def play(args: Args, config: EngineConfig) -> int:
    script = Script.model_validate_json(Path(args.target).read_text(encoding="utf-8"))
    replay_config = config.replay
    if args.continue_on_error:
        replay_config = replay_config.model_copy(update={"continue_on_error": True})

    async with _browser_session(config, args.headless) as session:
        await session.open_page("")
        executor = ReplayExecutor(session, replay_config, screenshots_dir=config.browser.screenshots_dir)
        result = await ScriptPlayer(executor).play(script, args.variables)

    print(result.model_dump_json(indent=2))
    return 0 if result.success else 1


async def snapshot(args: Args, config: EngineConfig) -> int:
    async with _browser_session(config, args.headless) as session:
        executor = ReplayExecutor(session, config.replay, screenshots_dir=config.browser.screenshots_dir)
        result = await executor.navigate(args.target)

    if not result.success:
        print(f"Navigation failed: {result.error}", file=sys.stderr)
        return 1
    print(result.data.get("semantic_snapshot") or "No interactive elements found")
    return 0


def check_configuration(config: EngineConfig) -> int:
    print(json.dumps(config.model_dump(mode="json"), indent=2))
    return 0


async def _dispatch(args: Args, config: EngineConfig) -> int:
    """Execute the requested command and return an exit code."""
    if args.command == "record":
        return await record(args, config)
    if args.command == "play":
        return await play(args, config)
    if args.command == "snapshot":
        return await snapshot(args, config)
    return check_configuration(config)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    try:
        args = parse_args(argv)
        config = load_config()
        configure_logger(config.log_level, config.log_file)
        sys.exit(asyncio.run(_dispatch(args, config)))
    except KeyboardInterrupt:
        print("\n👋 Operation cancelled by user")
        sys.exit(0)
    except Exception as e:
        logger.error(format_error_message(e, "Application error"))
        sys.exit(1)


if __name__ == "__main__":
    main()
