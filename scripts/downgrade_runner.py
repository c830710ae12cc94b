from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime, timezone

from app.config import Settings
from app.db import init_db
from app.logger import setup_logging
from app.services.reconciliation import downgrade_expired, expired_accounts
from app.services.store import BalanceStore

logger = logging.getLogger("downgrade_runner")


async def main() -> None:
    parser = argparse.ArgumentParser(description="Downgrade expired pro subscriptions.")
    parser.add_argument("--dry-run", action="store_true", help="List accounts, change nothing")
    args = parser.parse_args()

    setup_logging()
    cfg = Settings()
    store = BalanceStore(init_db(cfg), timeout=cfg.store_timeout_s)
    now = datetime.now(timezone.utc)
    try:
        if args.dry_run:
            for email in await expired_accounts(store, cfg, now):
                print(f"[dry-run] downgrade {email}")
            return
        result = await downgrade_expired(store, cfg, now, operation_type="auto_downgrade")
        for email in result.downgraded:
            logger.info("Downgraded expired subscription", extra={"email": email})
    finally:
        store.dispose()


if __name__ == "__main__":
    asyncio.run(main())
