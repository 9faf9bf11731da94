"""Command-line tools for inspecting pipeline inputs and state.

Provides subcommands for running local Tesseract OCR on an image,
previewing the LLM chunks built from an OCR elements file, recovering
JSON from a saved chat response, and printing a document's ledger record.
"""

import argparse
import json
import sys
from pathlib import Path

from docai.errors import DocAiError
from docai.llm.response import ResponseExtractor
from docai.ocr.chunker import build_chunks
from docai.ocr.elements import filter_by_confidence, load_elements
from docai.ocr.tesseract_engine import TesseractEngine, decode_image
from docai.state.sql_store import SqlStateStore
from docai.utils.config import OcrConfig, load_config
from docai.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def ocr_file(
    path: Path, ocr_config: OcrConfig, min_confidence: float | None = None
) -> dict[str, object]:
    """Run Tesseract on one image and keep the confident elements.

    Args:
        path: Image file.
        ocr_config: Engine settings and the default confidence threshold.
        min_confidence: Threshold override (0-100).

    Returns:
        A ``{"Blocks": [...]}`` document accepted by ``chunk``.
    """
    engine = TesseractEngine(
        tesseract_cmd=ocr_config.tesseract_cmd,
        default_lang=ocr_config.default_lang,
        psm=ocr_config.psm,
    )
    threshold = ocr_config.min_confidence if min_confidence is None else min_confidence
    elements = engine.extract_elements(decode_image(path.read_bytes(), str(path)))
    kept = filter_by_confidence(elements, threshold)
    logger.info("ocr.file path=%s elements=%d kept=%d", path, len(elements), len(kept))
    return {"Blocks": [e.to_dict() for e in kept]}


def chunk_file(path: Path, max_chars: int) -> list[dict[str, object]]:
    """Build LLM chunks from an OCR elements JSON file.

    Args:
        path: File holding ``{"Blocks": [...]}`` or a list of elements.
        max_chars: Character budget per chunk.

    Returns:
        One dict per chunk with its index, size, element ids and text.
    """
    elements = load_elements(path.read_bytes())
    return [
        {
            "index": chunk.index,
            "chars": len(chunk.text),
            "element_ids": chunk.element_ids,
            "text": chunk.text,
        }
        for chunk in build_chunks(elements, max_chars)
    ]


def extract_file(path: Path) -> dict[str, object]:
    """Recover the JSON object carried by a saved chat response.

    Files that are not valid JSON are treated as raw response text.
    """
    raw = path.read_text(encoding="utf-8")
    try:
        envelope = json.loads(raw)
    except json.JSONDecodeError:
        envelope = raw
    return ResponseExtractor().extract_dict(envelope)


def show_status(document_id: str, database_url: str) -> dict[str, object] | None:
    """Return the wire form of a document's ledger record, if any."""
    store = SqlStateStore(database_url, create_tables=False)
    record = store.get(document_id)
    return record.to_wire() if record else None


def _emit(payload: object, output: Path | None) -> None:
    text = json.dumps(payload, indent=2)
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text)
        print(f"Output written to {output}")
    else:
        print(text)


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    config = load_config()
    parser = argparse.ArgumentParser(
        description="Title document AI tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ocr_parser = subparsers.add_parser(
        "ocr", help="Run local Tesseract OCR on an image"
    )
    ocr_parser.add_argument("file", type=Path, help="Image file")
    ocr_parser.add_argument(
        "--min-confidence",
        type=float,
        default=None,
        help=f"Confidence threshold (default: {config.ocr.min_confidence})",
    )
    ocr_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    chunk_parser = subparsers.add_parser(
        "chunk", help="Preview LLM chunks for an elements file"
    )
    chunk_parser.add_argument("file", type=Path, help="OCR elements JSON file")
    chunk_parser.add_argument(
        "--max-chars",
        type=int,
        default=config.nlp.chunk_max_chars,
        help=f"Chunk budget (default: {config.nlp.chunk_max_chars})",
    )
    chunk_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    extract_parser = subparsers.add_parser(
        "extract", help="Recover JSON from a saved chat response"
    )
    extract_parser.add_argument("file", type=Path, help="Response envelope file")
    extract_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    status_parser = subparsers.add_parser(
        "status", help="Print a document's ledger record"
    )
    status_parser.add_argument("document_id", help="Document id")
    status_parser.add_argument(
        "--db",
        default=config.state.database_url,
        help=f"Database URL (default: {config.state.database_url})",
    )

    args = parser.parse_args(argv)

    setup_logging(config.log_level)

    try:
        if args.command == "ocr":
            if not args.file.exists():
                print(f"Error: {args.file} does not exist", file=sys.stderr)
                sys.exit(1)
            _emit(ocr_file(args.file, config.ocr, args.min_confidence), args.output)
        elif args.command == "chunk":
            if not args.file.exists():
                print(f"Error: {args.file} does not exist", file=sys.stderr)
                sys.exit(1)
            _emit(chunk_file(args.file, args.max_chars), args.output)
        elif args.command == "extract":
            if not args.file.exists():
                print(f"Error: {args.file} does not exist", file=sys.stderr)
                sys.exit(1)
            _emit(extract_file(args.file), args.output)
        elif args.command == "status":
            record = show_status(args.document_id, args.db)
            if record is None:
                print(f"Error: no state for {args.document_id}", file=sys.stderr)
                sys.exit(1)
            _emit(record, None)
        else:
            parser.print_help()
            sys.exit(0)
    except DocAiError as exc:
        logger.error("Command %s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
