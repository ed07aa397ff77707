#!/usr/bin/env python
"""
Weekly General Opportunity Search

Runs once a week via cron to:
1. Create a general discovery job with the catalogue-wide query
2. Search for up to 100 candidate pages
3. Extract, save and schedule embeddings for the opportunities found

Usage:
    python scripts/weekly_general_search.py [--limit N]

Exit codes:
    0 - Success
    1 - Job failed
"""

import argparse
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from grantscout.database import SessionLocal
from grantscout.models import DiscoveryJobKind
from grantscout.services.background import shutdown
from grantscout.services.discovery import run_discovery_job
from grantscout.services.job_tracker import create_job
from grantscout.services.query_builder import general_search_query

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger('weekly_general_search')

WEEKLY_SEARCH_LIMIT = 100


def main():
    """Main entry point for the weekly general search."""
    parser = argparse.ArgumentParser(description='Run the weekly general opportunity search')
    parser.add_argument('--limit', type=int, default=WEEKLY_SEARCH_LIMIT, help='Search results to extract')
    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("WEEKLY GENERAL SEARCH STARTING")
    logger.info("=" * 60)

    try:
        session = SessionLocal()
        try:
            job_id = create_job(session, DiscoveryJobKind.GENERAL, general_search_query()).id
        finally:
            session.close()

        result = run_discovery_job(job_id, args.limit)

        logger.info("=" * 60)
        logger.info("JOB SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Job:               {result['job_id']}")
        logger.info(f"URLs Found:        {result.get('urls_found', 0)}")
        logger.info(f"Batches:           {result.get('batches', 0)} ({result.get('degraded_batches', 0)} degraded)")
        logger.info(f"Items Extracted:   {result.get('items_extracted', 0)}")
        logger.info(f"Created:           {result.get('created', 0)}")
        logger.info(f"Updated:           {result.get('updated', 0)}")
        logger.info(f"Duration:          {result.get('duration_seconds', 0):.1f}s")

        if result.get('status') != 'completed':
            logger.error(f"JOB FAILED: {result.get('error')}")
            return 1

        logger.info("JOB COMPLETED SUCCESSFULLY")
        return 0

    except Exception as e:
        logger.error(f"JOB FAILED: {e}", exc_info=True)
        return 1
    finally:
        # Embeddings scheduled on save finish before exit
        shutdown(wait=True)


if __name__ == '__main__':
    sys.exit(main())
