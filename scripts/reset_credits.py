#!/usr/bin/env python3
"""
Refill message credits whose monthly window has elapsed.

Meant to run from cron, e.g. daily:
    0 3 * * * /usr/bin/python3 /srv/sim/scripts/reset_credits.py
"""
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from sim.config import get_config
from sim.credits import reset_expired_credits
from sim.database import close_all, init_all
from sim.db_storage import cleanup_expired_sessions


def main():
    cfg = get_config()
    try:
        init_all(db_url=cfg.get("DATABASE_URL"), redis_url=cfg.get("REDIS_URL"))
        count = reset_expired_credits(cfg)
        expired = cleanup_expired_sessions()
        print(f"Reset credits for {count} profiles, deactivated {expired} expired sessions")
        return 0
    except Exception as e:
        print(f"Credit reset failed: {e}")
        return 1
    finally:
        close_all()


if __name__ == "__main__":
    sys.exit(main())
