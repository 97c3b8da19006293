"""Command-line entry point for the live call feedback recorder."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from callcoach.config import Config, SessionSettings
from callcoach.convert import create_converter
from callcoach.events import EventBus, SessionStartupError
from callcoach.feedback import FeedbackEngine
from callcoach.providers import create_provider, parse_selector
from callcoach.session import Session
from callcoach.transcriber import WhisperTranscriber

logger = logging.getLogger("callcoach")

EXIT_OK = 0
EXIT_STARTUP_FAILED = 1
EXIT_BAD_CONFIG = 2
EXIT_NOT_SAVED = 3


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="callcoach", description="Live call feedback application")
    p.add_argument("-i", "--interval", type=int, help="Feedback interval in milliseconds")
    p.add_argument("-w", "--whisper-url", help="Whisper server URL")
    p.add_argument("-d", "--data-dir", help="Data directory path")
    p.add_argument("-m", "--max-transcriptions", type=int, help="Maximum transcriptions for feedback")
    p.add_argument("-p", "--prompt", help="Feedback prompt template ({context} marks the transcript)")
    p.add_argument("-o", "--model", help="Feedback model as provider:model")
    p.add_argument("--summary-prompt", help="End-of-session summary prompt template")
    p.add_argument("--no-summary", action="store_true", help="Skip the end-of-session summary")
    p.add_argument("--converter", choices=("sox", "numpy"), help="Segment converter")
    p.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    return p


def settings_from_args(args: argparse.Namespace) -> SessionSettings:
    return Config.settings(
        interval_ms=args.interval,
        whisper_url=args.whisper_url,
        data_dir=args.data_dir,
        max_transcriptions=args.max_transcriptions,
        feedback_prompt=args.prompt,
        model=args.model,
        summary_prompt=args.summary_prompt,
        session_summary=False if args.no_summary else None,
        converter=args.converter,
    )


def build_session(settings: SessionSettings) -> Session:
    events = EventBus()
    provider_name, _ = parse_selector(settings.model)
    provider = create_provider(
        settings.model,
        api_key=Config.api_key_for(provider_name),
        base_url=Config.OLLAMA_BASE_URL if provider_name == "ollama" else None,
        timeout=settings.http_timeout,
    )
    transcriber = WhisperTranscriber(
        settings.whisper_url,
        create_converter(settings.converter),
        events=events,
        timeout=settings.http_timeout,
    )
    feedback = FeedbackEngine(
        provider,
        events=events,
        feedback_prompt=settings.feedback_prompt,
        summary_prompt=settings.summary_prompt,
    )
    return Session(settings, transcriber, feedback, events=events)


def install_stop_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _on_signal(signame: str) -> None:
        if not stop.is_set():
            print(f"\nReceived {signame}, stopping...")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig.name)
        except NotImplementedError:
            # Not available on Windows event loops
            pass


async def run(settings: SessionSettings) -> int:
    session = build_session(settings)
    stop = asyncio.Event()
    install_stop_handlers(stop)

    try:
        await session.run(stop)
    except SessionStartupError as e:
        logger.error("Session could not start: %s", e)
        return EXIT_STARTUP_FAILED

    if not session.saved:
        logger.error("Transcript could not be saved to %s", session.ledger.path)
        return EXIT_NOT_SAVED
    print(f"Session saved to: {session.ledger.path.name}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=(args.log_level or Config.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = settings_from_args(args)
    problems = Config.validate(settings)
    if problems:
        for problem in problems:
            logger.error("Configuration error: %s", problem)
        return EXIT_BAD_CONFIG
    for warning in Config.missing_credentials(settings):
        logger.warning("%s; feedback will be empty", warning)

    return asyncio.run(run(settings))


if __name__ == "__main__":
    sys.exit(main())
