#!/usr/bin/env python
"""
Daily Matching Job

Runs daily via cron: hybrid-matches opportunities from the last 7 days
against every user with profile data and saves daily_automated matches.

Usage:
    python scripts/daily_matching.py

Exit codes:
    0 - Success (per-user errors are logged)
    1 - Job failed
"""

import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from grantscout.services.discovery import run_daily_matching_workflow

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger('daily_matching')


def main():
    """Main entry point for daily matching."""
    logger.info("=" * 60)
    logger.info("DAILY MATCHING JOB STARTING")
    logger.info("=" * 60)

    try:
        result = run_daily_matching_workflow()

        logger.info(f"Users Processed:       {result['users_processed']}")
        logger.info(f"Opportunities Matched: {result['opportunities_matched']}")
        if result['errors']:
            logger.warning(f"Errors: {result['errors']}")

        logger.info("JOB COMPLETED")
        return 0

    except Exception as e:
        logger.error(f"JOB FAILED: {e}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
