#!/usr/bin/env python
"""
Embedding Backfill

Embeds opportunities that were saved without an embedding (for example
when the embedding service was unavailable at save time).

Usage:
    python scripts/backfill_embeddings.py [--limit N]
"""

import argparse
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from grantscout.services.embeddings import DEFAULT_BATCH_LIMIT, batch_generate_opportunity_embeddings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger('backfill_embeddings')


def main():
    parser = argparse.ArgumentParser(description='Embed opportunities lacking an embedding')
    parser.add_argument('--limit', type=int, default=DEFAULT_BATCH_LIMIT, help='Maximum opportunities to embed')
    args = parser.parse_args()

    try:
        result = batch_generate_opportunity_embeddings(args.limit)
        logger.info(f"Embedded {result['processed']} opportunities, {len(result['errors'])} errors")
        return 0 if not result['errors'] else 1
    except Exception as e:
        logger.error(f"Backfill failed: {e}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
