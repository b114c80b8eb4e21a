"""Load catalogue phones into the store's ``phones`` table.

Usage:
    # Ingest sample data (default)
    python -m catalog_tools.ingest

    # Ingest CSV-imported data
    python -m catalog_tools.ingest --data phones.json

Uses SUPABASE_URL and SUPABASE_SERVICE_KEY (or SUPABASE_ANON_KEY) from the
environment or .env.
"""

import argparse
import asyncio
import json
from pathlib import Path

from dotenv import load_dotenv

from touchtrial.models import Phone
from touchtrial.store import DataStore, PostgrestStore

BATCH_SIZE = 50

SAMPLE_DATA = Path(__file__).parent / "sample_data" / "phones.json"


def load_phones(data_path: str | Path | None = None) -> list[Phone]:
    data_path = Path(data_path) if data_path else SAMPLE_DATA
    with open(data_path, encoding="utf-8") as f:
        raw = json.load(f)
    return [Phone.model_validate(item) for item in raw]


async def ingest_phones(store: DataStore, phones: list[Phone]) -> int:
    """Upsert phones in batches. Returns the number of rows written."""
    written = 0
    for i in range(0, len(phones), BATCH_SIZE):
        batch = phones[i:i + BATCH_SIZE]
        stored = await store.upsert_phones(batch)
        written += len(stored)
        print(f"  Batch {i // BATCH_SIZE + 1}: {len(stored)} phones upserted")
    return written


def main():
    parser = argparse.ArgumentParser(
        description="Upsert catalogue phones into the store",
        prog="python -m catalog_tools.ingest",
    )
    parser.add_argument(
        "--data",
        help="Path to phones JSON file (default: sample_data/phones.json)",
    )
    args = parser.parse_args()

    load_dotenv()
    from touchtrial.config import Settings

    cfg = Settings()
    store = PostgrestStore(cfg.rest_url, cfg.supabase_anon_key, cfg.supabase_service_key)

    phones = load_phones(args.data)
    print(f"Loaded {len(phones)} phones from {args.data or SAMPLE_DATA}")
    written = asyncio.run(ingest_phones(store, phones))
    print(f"Done: {written} phones ingested into {cfg.rest_url}")


if __name__ == "__main__":
    main()
