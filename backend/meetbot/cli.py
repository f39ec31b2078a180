"""
Command-line entry point.

    meetbot run [--audio-stdin]
    meetbot ask "question" [--speak] [--context TEXT]
    meetbot ask --last
    meetbot retrieve "question"
    meetbot analyses [--limit N]
    meetbot reset
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from openai import AsyncOpenAI

from core.config import QA_MODE, Settings, load_settings
from core.logger import configure_logging
from meetbot.agent import build_context, build_ranker
from meetbot.archive.store import AnalysisArchive
from meetbot.errors import ConfigError, MeetbotError
from meetbot.main import main as run_agent_main
from meetbot.transcript.store import TranscriptStore

logger = logging.getLogger("meetbot.cli")

_RUN_REQUIRED = ("OPENAI_API_KEY", "PINECONE_API_KEY", "PINECONE_INDEX_NAME", "MEET_URL")
_ASK_REQUIRED = ("OPENAI_API_KEY", "PINECONE_API_KEY", "PINECONE_INDEX_NAME")


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="meetbot", description="Meeting answer agent")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Join the meeting and answer questions until interrupted")
    run_parser.add_argument(
        "--audio-stdin",
        action="store_true",
        help="Read 16 kHz mono linear16 audio from stdin and stream it to transcription",
    )

    ask_parser = subparsers.add_parser("ask", help="Run one utterance through the pipeline and print the result")
    ask_parser.add_argument("question", nargs="?", help="Utterance text")
    ask_parser.add_argument("--last", action="store_true", help="Use the latest FINAL utterance from the transcript")
    ask_parser.add_argument("--speak", action="store_true", help="Speak the answer")
    ask_parser.add_argument("--context", default=None, help="Use this context instead of retrieval")

    retrieve_parser = subparsers.add_parser("retrieve", help="Run retrieval only and print context and sources")
    retrieve_parser.add_argument("question")

    analyses_parser = subparsers.add_parser("analyses", help="Print archived analyses, newest first")
    analyses_parser.add_argument("--limit", type=int, default=None)

    subparsers.add_parser("reset", help="Clear the transcript store")
    return parser


def _required_for(command: str) -> tuple[str, ...]:
    if command == "run":
        return _RUN_REQUIRED if QA_MODE else _RUN_REQUIRED + ("DEEPGRAM_API_KEY",)
    if command == "ask":
        return _ASK_REQUIRED
    if command == "retrieve":
        return _ASK_REQUIRED
    return ()


async def _ask(settings: Settings, question: str, speak: bool, context: Optional[str]) -> dict:
    agent_context = build_context(settings, speak=speak)
    result = await agent_context.orchestrator.process(question, context=context)
    return result.to_dict()


async def _retrieve(settings: Settings, question: str) -> dict:
    ranker = build_ranker(settings, AsyncOpenAI(api_key=settings.openai_api_key))
    if ranker is None:
        raise ConfigError("Retrieval needs PINECONE_API_KEY and PINECONE_INDEX_NAME")
    result = await ranker.retrieve(question)
    return result.to_dict()


def run_command(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "run":
        return run_agent_main(settings, audio_stdin=args.audio_stdin)

    if args.command == "ask":
        question = args.question
        if args.last:
            question = TranscriptStore(settings.transcript_path).latest_final()
            if not question:
                print("No FINAL utterance in the transcript", file=sys.stderr)
                return 1
        if not question or not question.strip():
            print("ask needs a question or --last", file=sys.stderr)
            return 2
        _print_json(asyncio.run(_ask(settings, question, args.speak, args.context)))
        return 0

    if args.command == "retrieve":
        _print_json(asyncio.run(_retrieve(settings, args.question)))
        return 0

    if args.command == "analyses":
        records = AnalysisArchive(settings.analysis_dir).list_all(limit=args.limit)
        _print_json([record.to_dict() for record in records])
        return 0

    if args.command == "reset":
        TranscriptStore(settings.transcript_path).reset()
        print(f"Cleared {settings.transcript_path}")
        return 0

    return 2


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(require=_required_for(args.command))
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    configure_logging(settings.log_level)
    try:
        return run_command(args, settings)
    except MeetbotError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
