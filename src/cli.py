"""Command-line interface for the EOB extraction pipeline."""

import argparse
import json
import logging
import sys
from pathlib import Path
from uuid import UUID

import dotenv

from eobflow import PageSource, Services
from eobflow.config import Config
from eobflow.errors import EobFlowError
from eobflow.pipeline import LocalDispatcher, reprocess_document


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_enqueue(services: Services, args) -> int:
    """Split a document into page jobs and dispatch workers."""
    document_id = UUID(args.document_id)

    if args.url or args.key:
        source = PageSource(url=args.url, store=args.store, bucket=args.bucket, key=args.key)
    else:
        document = services.db.get_document(document_id)
        source = document.source if document else None
        if source is None:
            print(f"Document {document_id} has no stored source; pass --url or --key")
            return 1

    result = services.orchestrator.enqueue(document_id, source)
    print_json(result.model_dump(mode="json"))

    # Local workers run on this process's thread pool; wait for them before exiting
    if isinstance(services.dispatcher, LocalDispatcher):
        for worker_result in services.dispatcher.wait():
            print_json(worker_result)
    return 0


def cmd_sweep(services: Services, args) -> int:
    """Run one recovery sweep pass."""
    summary = services.sweeper.sweep()
    print_json(summary.model_dump(mode="json"))
    return 0


def cmd_export(services: Services, args) -> int:
    """Generate an 835 file for one or more documents."""
    document_ids = [UUID(document_id) for document_id in args.document_ids]

    if args.unlock:
        for document_id in document_ids:
            services.exporter.unlock(document_id)

    batch = True if args.batch else None
    remittance = services.exporter.generate(UUID(args.tenant_id), document_ids, batch=batch)

    output_path = Path(args.output_dir) / remittance.file_name
    output_path.write_text(remittance.content)

    print(f"Wrote {output_path}")
    print(f"  Transactions: {remittance.transaction_count}")
    print(f"  Segments: {remittance.segment_count}")
    print(f"  Batch ID: {remittance.batch_id}")
    return 0


def cmd_reprocess(services: Services, args) -> int:
    """Wipe a terminal document's results and run it again."""
    result = reprocess_document(UUID(args.document_id), services.db, services.analytics, services.orchestrator)
    print_json(result.model_dump(mode="json"))

    if isinstance(services.dispatcher, LocalDispatcher):
        for worker_result in services.dispatcher.wait():
            print_json(worker_result)
    return 0


def cmd_evaluate(services: Services, args) -> int:
    """Re-run review exception evaluation for a document."""
    result = services.review.evaluate_document_exceptions(UUID(args.document_id))
    print_json(result.model_dump(mode="json"))
    return 0


def cmd_credits(services: Services, args) -> int:
    """Show a tenant's page credit balance."""
    tenant_id = UUID(args.tenant_id)
    print(f"Tenant {tenant_id}: {services.ledger.balance(tenant_id)} page credits")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="eobflow", description="EOB extraction pipeline")
    parser.add_argument("--local", action="store_true", help="Run workers in-process instead of on Modal")
    parser.add_argument("--env-file", default=".env", help="Environment file to load (default: .env)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    enqueue = subparsers.add_parser("enqueue", help="Split a document and dispatch page jobs")
    enqueue.add_argument("document_id")
    enqueue.add_argument("--url", help="Direct download URL of the PDF")
    enqueue.add_argument("--store", choices=["uploads", "gcs"], default="uploads")
    enqueue.add_argument("--bucket")
    enqueue.add_argument("--key", help="Object key of the PDF")
    enqueue.set_defaults(handler=cmd_enqueue)

    sweep = subparsers.add_parser("sweep", help="Run one recovery sweep pass")
    sweep.set_defaults(handler=cmd_sweep)

    export = subparsers.add_parser("export", help="Generate an 835 remittance file")
    export.add_argument("tenant_id")
    export.add_argument("document_ids", nargs="+")
    export.add_argument("--batch", action="store_true", help="Skip documents without payment items")
    export.add_argument("--unlock", action="store_true", help="Clear existing export locks first")
    export.add_argument("--output-dir", default=".")
    export.set_defaults(handler=cmd_export)

    reprocess = subparsers.add_parser("reprocess", help="Reprocess a finished document")
    reprocess.add_argument("document_id")
    reprocess.set_defaults(handler=cmd_reprocess)

    evaluate = subparsers.add_parser("evaluate", help="Re-evaluate review exceptions")
    evaluate.add_argument("document_id")
    evaluate.set_defaults(handler=cmd_evaluate)

    credits = subparsers.add_parser("credits", help="Show a tenant's credit balance")
    credits.add_argument("tenant_id")
    credits.set_defaults(handler=cmd_credits)

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    dotenv.load_dotenv(args.env_file)
    logging.basicConfig(level=logging.INFO)

    config = Config.from_env()
    if args.local:
        config.dispatch_mode = "local"

    services = Services(config)
    try:
        return args.handler(services, args)
    except EobFlowError as e:
        print(f"Error ({type(e).__name__}): {e}")
        return 1
    finally:
        services.close()


if __name__ == "__main__":
    sys.exit(main())
