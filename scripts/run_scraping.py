#!/usr/bin/env python3
"""
Scrape configured medical sources into their topic collections.

  python scripts/run_scraping.py menopause
  python scripts/run_scraping.py --status
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from medrag.cli import scrape_main

if __name__ == "__main__":
    load_dotenv()
    sys.exit(scrape_main())
