"""Command-line entry point for one-off transcriptions.

Reads a local audio file, runs it through the requested provider and prints
the normalized result (or an up-front cost estimate) as JSON. Typed failures
are printed in their serialized form with a distinct exit status.
"""

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from dataclasses import asdict
from pathlib import Path

from transcription_core.asr.interface import ResponseFormat, TranscriptionOptions, TranscriptionRequest
from transcription_core.config import Settings
from transcription_core.observability.logger import setup_logging
from transcription_core.service import TranscriptionService
from transcription_core.utils.errors import (
    APIError,
    TranscriptionError,
    TranscriptionTimeoutError,
)

logger = logging.getLogger(__name__)

EXIT_INPUT_ERROR = 1
EXIT_API_ERROR = 2
EXIT_TIMEOUT = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transcription-core", description="Transcribe an audio file."
    )
    parser.add_argument("file", type=Path, help="Path to the audio file")
    parser.add_argument(
        "--provider", choices=("openai", "assemblyai"), default="openai"
    )
    parser.add_argument("--language", help="ISO-639-1 language hint")
    parser.add_argument("--prompt", help="Style prompt (openai only)")
    parser.add_argument(
        "--format",
        dest="response_format",
        choices=[f.value for f in ResponseFormat],
        default=ResponseFormat.TEXT.value,
    )
    parser.add_argument("--speakers", dest="speakers_expected", help="Expected speakers (1-10)")
    parser.add_argument(
        "--estimate-only",
        action="store_true",
        help="Print the up-front cost estimate without calling the provider",
    )
    return parser


def exit_code_for(exc: TranscriptionError) -> int:
    if isinstance(exc, TranscriptionTimeoutError):
        return EXIT_TIMEOUT
    if isinstance(exc, APIError):
        return EXIT_API_ERROR
    return EXIT_INPUT_ERROR


async def _run(args: argparse.Namespace, service: TranscriptionService) -> dict:
    """Execute one CLI invocation and return the JSON-ready payload."""
    try:
        data = args.file.read_bytes()
        if args.estimate_only:
            return asdict(service.estimate_cost(len(data), args.provider))

        options = TranscriptionOptions.from_dict(
            {
                "language": args.language,
                "prompt": args.prompt,
                "responseFormat": args.response_format,
                "speakersExpected": args.speakers_expected,
            }
        )
        content_type, _ = mimetypes.guess_type(args.file.name)
        request = TranscriptionRequest(
            data=data, filename=args.file.name, content_type=content_type, options=options
        )
        result = await service.transcribe(request, args.provider)
        return result.to_dict()
    finally:
        await service.close()


def main(argv: list[str] | None = None) -> int:
    """Transcribe a file and print the result."""
    args = build_parser().parse_args(argv)
    setup_logging()
    try:
        settings = Settings.from_env()
    except TranscriptionError as exc:
        print(json.dumps(exc.to_dict()), file=sys.stderr)
        return EXIT_INPUT_ERROR
    logging.getLogger().setLevel(settings.log_level)

    try:
        payload = asyncio.run(_run(args, TranscriptionService(settings)))
    except TranscriptionError as exc:
        print(json.dumps(exc.to_dict()), file=sys.stderr)
        return exit_code_for(exc)
    except OSError as exc:
        logger.error("Cannot read %s: %s", args.file, exc)
        return EXIT_INPUT_ERROR

    print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
