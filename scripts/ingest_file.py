"""Re-ingest a downloaded bulk JSONL file and rerun the transform.

Usage: python scripts/ingest_file.py path/to/bulk.jsonl [--skip-backup]
"""

from __future__ import annotations

import argparse
import logging

from dotenv import load_dotenv

from catalog_sync.db.session import create_engine_from_env
from catalog_sync.ingest import read_jsonl_file
from catalog_sync.ingest.bulk import parse_bulk_lines
from catalog_sync.ingest.raw_store import RawIngestionStore
from catalog_sync.logic.transform import CatalogTransformer
from catalog_sync.utils.settings import SyncSettings


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("path")
    parser.add_argument("--skip-backup", action="store_true")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    engine = create_engine_from_env()
    settings = SyncSettings.from_env()

    records, report = parse_bulk_lines(read_jsonl_file(args.path))
    ingest = RawIngestionStore(engine, batch_size=settings.ingest_batch_size).ingest(records)
    result = CatalogTransformer(engine, backup_retention=settings.backup_retention).transform(
        skip_backup=args.skip_backup
    )
    print(
        f"Parsed {report.variants} variants ({report.malformed} malformed); "
        f"upserted {ingest.upserted}, skipped {ingest.skipped}; "
        f"projected {result.processed}, skipped {result.skipped}, failed {result.failed}, "
        f"removed {result.removed}"
    )
    if result.unmapped_values:
        print("Unmapped collection values: " + ", ".join(result.unmapped_values))


if __name__ == "__main__":
    main()
