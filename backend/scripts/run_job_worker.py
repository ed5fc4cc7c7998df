from dotenv import load_dotenv
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

load_dotenv(".env")

import argparse
import asyncio
import json
import logging

from nollyai.api.deps import get_scheduler
from nollyai.core.database import Base, engine
from nollyai.core.settings import settings


def main() -> int:
    parser = argparse.ArgumentParser(description="Process queued NollyAI jobs.")
    parser.add_argument("--loop", action="store_true", help="keep polling until interrupted")
    parser.add_argument("--limit", type=int, default=None, help="jobs per pass (default JOB_BATCH_SIZE)")
    parser.add_argument("--idle-sleep", type=float, default=None, help="seconds to wait when the queue is empty")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)

    scheduler = get_scheduler()
    if args.loop:
        try:
            asyncio.run(scheduler.run_forever(idle_sleep_s=args.idle_sleep))
        except KeyboardInterrupt:
            scheduler.stop()
        return 0

    stats = asyncio.run(scheduler.run_once(args.limit))
    print(json.dumps(stats))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
