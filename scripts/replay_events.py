"""
Replay storage events through the pipeline, e.g. to re-deliver uploads whose
loans were parked in ai_pending, or to retry verification directly.

Run (from the repository root):
  python -m scripts.replay_events events.json
  python -m scripts.replay_events --retry LOAN_ID [LOAN_ID ...]

events.json holds one event object or a list of them, in the same shape the
/api/events/storage endpoint accepts.
"""
import argparse
import asyncio
import json
import os
import sys
from typing import Optional

# Add parent so we can import from the service root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from database import create_engine, create_sessionmaker, init_db
from main import build_oracle
from services.loan_store import LoanStore
from services.pipeline import LoanEvidencePipeline, LoanNotFoundError, VerificationNotAllowedError
from services.verification import VerificationInvoker


def load_events(path: str) -> list[dict]:
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    return data if isinstance(data, list) else [data]


async def replay(events_path: Optional[str] = None, retry_ids: Optional[list[str]] = None) -> int:
    engine = create_engine(settings)
    await init_db(engine)
    invoker = VerificationInvoker(build_oracle(), timeout_seconds=settings.verification_timeout_seconds)
    pipeline = LoanEvidencePipeline(LoanStore(create_sessionmaker(engine)), invoker, settings)
    failures = 0
    try:
        if events_path:
            for event in load_events(events_path):
                outcome = await pipeline.process_event(event)
                print(f"{event.get('name')}: {outcome.action.value} "
                      f"(loan={outcome.loan_id}, status={outcome.status.value if outcome.status else None})"
                      + (f" - {outcome.reason}" if outcome.reason else ""))
        for loan_id in retry_ids or []:
            try:
                outcome = await pipeline.retry_verification(loan_id)
            except (LoanNotFoundError, VerificationNotAllowedError) as e:
                failures += 1
                print(f"{loan_id}: cannot retry ({e})")
                continue
            print(f"{loan_id}: {outcome.action.value}" + (f" - {outcome.reason}" if outcome.reason else ""))
    finally:
        await engine.dispose()
    return failures


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("events", nargs="?", help="JSON file with one or more storage events")
    parser.add_argument("--retry", nargs="+", default=[], metavar="LOAN_ID",
                        help="re-run verification for loans parked in ai_pending")
    args = parser.parse_args(argv)
    if not args.events and not args.retry:
        parser.error("give an events file and/or --retry LOAN_ID")
    return 1 if asyncio.run(replay(args.events, args.retry)) else 0


if __name__ == "__main__":
    sys.exit(main())
