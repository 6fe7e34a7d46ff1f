"""
appealground CLI
=================

Command-line interface for the knowledge base and the appeal letter
pipeline.

Usage:
    python -m appealground ingest --docs kb/ --doc-type policy --payer Aetna
    python -m appealground search "physical therapy session limit" --doc-type policy
    python -m appealground parse --letter denial.txt --payer Aetna --output case.json
    python -m appealground codes CO-45 16 PR-204
    python -m appealground plan --case case.json
    python -m appealground generate --case case.json --output letter.json
    python -m appealground verify --sections sections.json
    python -m appealground stats
    python -m appealground validate --input case.json --schema case
    python -m appealground export-schemas --output-dir schemas
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from appealground.config import get_config
from appealground.utils import save_json, setup_logging

TEXT_SUFFIXES = (".txt", ".md")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="appealground",
        description="appealground: citation-grounded insurance appeal letters",
    )
    parser.add_argument("--config", type=str, default=None, help="Path to config YAML")
    parser.add_argument("--verbose", "-v", action="store_true")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # ── ingest ──────────────────────────────────────────────────
    ingest_parser = subparsers.add_parser("ingest", help="Ingest knowledge-base documents")
    ingest_parser.add_argument("--docs", required=True,
                               help="Text file, directory of .txt/.md files, or JSONL of inputs")
    ingest_parser.add_argument("--doc-type", default="other",
                               choices=["policy", "template", "prior_appeal_accepted",
                                        "prior_appeal_denied", "clinical", "benefits", "other"])
    ingest_parser.add_argument("--payer", default=None, help="Owning payer (omit for shared docs)")
    ingest_parser.add_argument("--tags", nargs="*", default=[], help="Tags for soft boosting")

    # ── search ──────────────────────────────────────────────────
    search_parser = subparsers.add_parser("search", help="Search the knowledge base")
    search_parser.add_argument("query", help="Free-text query")
    search_parser.add_argument("--payer", default=None)
    search_parser.add_argument("--doc-type", default=None)
    search_parser.add_argument("--tags", nargs="*", default=[])
    search_parser.add_argument("--top-k", type=int, default=None)

    # ── parse / codes ───────────────────────────────────────────
    parse_parser = subparsers.add_parser("parse", help="Parse a denial letter into a case")
    parse_parser.add_argument("--letter", required=True, help="Plain-text denial letter")
    parse_parser.add_argument("--payer", default=None, help="Payer that issued the denial")
    parse_parser.add_argument("--case-id", default=None, help="Case ID (default: derived)")
    parse_parser.add_argument("--output", default=None, help="Output DenialCase JSON path")

    codes_parser = subparsers.add_parser("codes", help="Explain denial reason codes")
    codes_parser.add_argument("codes", nargs="+", help="Codes such as CO-45 or 16")

    # ── plan / generate ─────────────────────────────────────────
    for name, help_text in (("plan", "Plan arguments for a denial case"),
                            ("generate", "Generate a verified appeal letter")):
        case_parser = subparsers.add_parser(name, help=help_text)
        source = case_parser.add_mutually_exclusive_group(required=True)
        source.add_argument("--case", help="DenialCase JSON file")
        source.add_argument("--case-id", help="ID of a case registered in the store")
        case_parser.add_argument("--user-context", default=None, help="UserContext JSON file")
        case_parser.add_argument("--output", default=None, help="Output JSON path")
        if name == "generate":
            case_parser.add_argument("--tone", choices=["professional", "firm", "concise"],
                                     default=None)
            case_parser.add_argument("--no-inline-citations", action="store_true")

    # ── verify ──────────────────────────────────────────────────
    verify_parser = subparsers.add_parser("verify", help="Verify letter sections")
    verify_parser.add_argument("--sections", required=True, help="JSON list of sections")
    verify_parser.add_argument("--output", default=None, help="Output JSON path")

    # ── stats ───────────────────────────────────────────────────
    subparsers.add_parser("stats", help="Show knowledge store statistics")

    # ── validate ────────────────────────────────────────────────
    validate_parser = subparsers.add_parser("validate", help="Validate a JSON file")
    validate_parser.add_argument("--input", required=True, help="JSON file to validate")
    validate_parser.add_argument("--schema", required=True,
                                 choices=["case", "document", "chunk", "section", "letter"])

    # ── export-schemas ──────────────────────────────────────────
    schema_parser = subparsers.add_parser("export-schemas", help="Export JSON schemas")
    schema_parser.add_argument("--output-dir", default="schemas")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = get_config(args.config)
    setup_logging(level="DEBUG" if args.verbose else config.log_level,
                  format_style=config.log_format)

    commands = {
        "ingest": cmd_ingest,
        "search": cmd_search,
        "parse": cmd_parse,
        "codes": cmd_codes,
        "plan": cmd_plan,
        "generate": cmd_generate,
        "verify": cmd_verify,
        "stats": cmd_stats,
        "validate": cmd_validate,
        "export-schemas": cmd_export_schemas,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        handler(args, config)
    except (ValidationError, ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


# ── Helpers ────────────────────────────────────────────────────────

def _load_json_file(path: str) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _pipeline(config):
    from appealground.pipeline import AppealPipeline
    return AppealPipeline(config)


def _resolve_case(args, pipeline):
    from appealground.schemas.case import DenialCase

    if args.case:
        case = DenialCase.model_validate(_load_json_file(args.case))
        pipeline.register_case(case)
        return case
    case = pipeline.get_case(args.case_id)
    if case is None:
        raise ValueError(f"Unknown case '{args.case_id}'. Pass --case to register it.")
    return case


def _resolve_user_context(args):
    from appealground.schemas.case import UserContext

    if not args.user_context:
        return None
    return UserContext.model_validate(_load_json_file(args.user_context))


def _read_ingest_inputs(args) -> list:
    from appealground.ingest.documents import IngestInput
    from appealground.schemas.evidence import DocMeta, DocType

    docs_path = Path(args.docs)
    meta = DocMeta(doc_type=DocType(args.doc_type), payer_name=args.payer, tags=args.tags)

    if docs_path.is_dir():
        files = sorted(p for p in docs_path.iterdir() if p.suffix.lower() in TEXT_SUFFIXES)
    elif docs_path.suffix.lower() == ".jsonl":
        inputs = []
        with open(docs_path, encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    inputs.append(IngestInput.model_validate(json.loads(line)))
        return inputs
    elif docs_path.is_file():
        files = [docs_path]
    else:
        raise FileNotFoundError(f"{docs_path} not found")

    return [
        IngestInput(
            doc_id=path.stem,
            filename=path.name,
            mime_type="text/markdown" if path.suffix.lower() == ".md" else "text/plain",
            text=path.read_text(encoding="utf-8"),
            meta=meta,
        )
        for path in files
    ]


# ── Commands ───────────────────────────────────────────────────────

def cmd_ingest(args, config):
    """Ingest documents into the knowledge store."""
    pipeline = _pipeline(config)
    inputs = _read_ingest_inputs(args)

    print(f"Ingesting {len(inputs)} documents...")
    results = pipeline.ingest(inputs)
    for result in results:
        print(f"  {result.doc_id}: {result.chunks} chunks")
        for warning in result.warnings:
            print(f"    ⚠️  {warning}")
    pipeline.save()
    print(f"Ingestion complete. Store: {config.store_file}")


def cmd_search(args, config):
    """Search the knowledge base."""
    from appealground.schemas.evidence import DocType, SearchFilters

    pipeline = _pipeline(config)
    filters = SearchFilters(
        payer_name=args.payer,
        doc_type=DocType(args.doc_type) if args.doc_type else None,
        tags=args.tags,
    )
    results = pipeline.search(args.query, filters, args.top_k)
    if not results:
        print("No results.")
        return

    for rank, item in enumerate(results, start=1):
        preview = " ".join(item.text.split())[:100]
        print(f"{rank:>2}. {item.score:.4f}  {item.doc_id} [{item.meta.doc_type.value}]  {item.chunk_id}")
        print(f"      {preview}")


def cmd_parse(args, config):
    """Parse a denial letter and register the case in the store."""
    letter_path = Path(args.letter)
    pipeline = _pipeline(config)
    case = pipeline.parse_denial(
        letter_path.read_text(encoding="utf-8"),
        case_id=args.case_id,
        payer_name=args.payer,
        filename=letter_path.name,
    )

    print(f"Case: {case.case_id}")
    print(f"  Claim number: {case.claim_number.value or '-'}")
    print(f"  Member: {case.member_name.value or '-'} ({case.member_id.value or '-'})")
    print(f"  Category: {case.category.value}")
    print(f"  Denial codes: {', '.join(case.denial_code_list) or '-'}")
    print(f"  CPT codes: {', '.join(case.cpt_codes) or '-'}")
    print(f"  Reason: {case.denial_reason_summary.value or case.denial_reason_summary.notes}")
    for item in case.missing_information.value or []:
        print(f"  Missing: {item}")

    if args.output:
        save_json(case.model_dump(mode="json"), args.output)
        print(f"\nCase saved to {args.output}")
    pipeline.save()


def cmd_codes(args, config):
    """Explain denial reason codes from the local CARC dictionary."""
    from appealground.ingest.denial_codes import analyze_codes

    for analysis in analyze_codes(args.codes):
        if not analysis.found:
            print(f"{analysis.input_code} → {analysis.normalized_code}: {analysis.explanation}")
            continue
        print(f"{analysis.input_code} → CARC {analysis.normalized_code}: {analysis.title}")
        print(f"    {analysis.explanation}")
        print(f"    Action: {analysis.recommended_action}")


def cmd_plan(args, config):
    """Plan the arguments for a denial case."""
    pipeline = _pipeline(config)
    case = _resolve_case(args, pipeline)
    result = pipeline.plan(case, _resolve_user_context(args))

    print(f"\nThesis: {result.plan.thesis}\n")
    for i, argument in enumerate(result.plan.arguments, start=1):
        print(f"  {i}. {argument.claim}")
        for evidence in argument.required_evidence:
            print(f"       - {evidence}")
    print(f"\n  Retrieved evidence chunks: {len(result.retrieved_context)}")
    for item in result.missing_evidence:
        print(f"  Missing: {item}")

    if args.output:
        save_json(result.model_dump(mode="json"), args.output)
        print(f"\n  Plan saved to {args.output}")
    pipeline.save()


def cmd_generate(args, config):
    """Generate a verified appeal letter."""
    from appealground.schemas.letter import GenerateOptions

    pipeline = _pipeline(config)
    case = _resolve_case(args, pipeline)
    options = GenerateOptions(
        tone=args.tone or config.letter.tone,
        include_citations_inline=(
            config.letter.include_citations_inline and not args.no_inline_citations
        ),
    )
    letter = pipeline.generate(case, options, _resolve_user_context(args))

    print(letter.full_text)
    print(f"\n{'=' * 60}")
    print(f"Letter: {letter.letter_id}")
    print(f"Evidence gaps: {len(letter.missing_evidence)}")
    for gap in letter.missing_evidence:
        print(f"  - {gap}")
    for warning in letter.warnings:
        print(f"  ⚠️  {warning}")

    if args.output:
        save_json(letter.model_dump(mode="json"), args.output)
        print(f"\nLetter saved to {args.output}")
    pipeline.save()


def cmd_verify(args, config):
    """Verify a JSON list of letter sections."""
    from appealground.schemas.letter import LetterSection

    data = _load_json_file(args.sections)
    if isinstance(data, dict):
        data = data.get("sections", [])
    sections = [LetterSection.model_validate(s) for s in data]

    outcome = _pipeline(config).verify(sections)
    print(f"Sections: {len(outcome.sections)}")
    print(f"Claims patched: {len(outcome.unresolved_claims)}")
    for claim in outcome.unresolved_claims:
        print(f"  - {claim}")
    print(f"Evidence gaps: {len(outcome.evidence_gaps)}")
    for gap in outcome.evidence_gaps:
        print(f"  - {gap}")
    for warning in outcome.warnings:
        print(f"  ⚠️  {warning}")

    if args.output:
        save_json(outcome.model_dump(mode="json"), args.output)
        print(f"\nVerified sections saved to {args.output}")


def cmd_stats(args, config):
    """Show knowledge store statistics."""
    stats = _pipeline(config).store.stats()
    print(f"Store: {config.store_file}")
    for key, value in stats.items():
        print(f"  {key}: {value}")


def cmd_validate(args, config):
    """Validate a JSON file against an appealground schema."""
    from appealground.schemas.export import validate_payload

    errors = validate_payload(args.schema, _load_json_file(args.input))
    if errors:
        print(f"Validation FAILED: {len(errors)} errors")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    print("Validation PASSED ✅")


def cmd_export_schemas(args, config):
    """Export JSON schemas for all data contracts."""
    from appealground.schemas.export import export_all_schemas

    paths = export_all_schemas(args.output_dir)
    for path in paths:
        print(f"Exported: {path}")
    print(f"\n{len(paths)} schemas exported to {args.output_dir}/")


if __name__ == "__main__":
    main()
