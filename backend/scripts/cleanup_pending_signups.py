#!/usr/bin/env python3
"""
Pending Signup Cleanup Script

Deletes checkout reservations that expired without completing, freeing
their slugs. Completed signups are never touched: they are the replay
record for payment verification.
Run as a cron job or manually: python -m scripts.cleanup_pending_signups

Usage:
    python -m scripts.cleanup_pending_signups                 # Delete everything already expired
    python -m scripts.cleanup_pending_signups --grace-hours 6 # Keep rows expired less than 6h ago
"""

import asyncio
import argparse
import logging
from datetime import timedelta

# Add parent directory to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from reflets.domain.subscription import utcnow
from reflets.infrastructure.db.database import close_db, init_db
from reflets.infrastructure.db.repositories.pending_signup_repository import (
    get_pending_signup_repository,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def cleanup_pending_signups(grace_hours: int = 0) -> int:
    """
    Delete expired, uncompleted pending signups.

    Args:
        grace_hours: Only delete rows whose expiry is at least this old

    Returns:
        Number of rows deleted
    """
    cutoff = utcnow() - timedelta(hours=grace_hours)
    logger.info(f"Deleting pending signups expired before {cutoff.isoformat()}")

    await init_db()
    try:
        return await get_pending_signup_repository().delete_expired(cutoff)
    finally:
        await close_db()


async def main():
    parser = argparse.ArgumentParser(description="Delete expired pending signups")
    parser.add_argument(
        "--grace-hours",
        type=int,
        default=0,
        help="Keep rows that expired less than this many hours ago (default: 0)"
    )
    args = parser.parse_args()

    deleted = await cleanup_pending_signups(grace_hours=args.grace_hours)

    print("\n=== Cleanup Complete ===")
    print(f"Deleted: {deleted}")


if __name__ == "__main__":
    asyncio.run(main())
