#!/usr/bin/env python3
"""
Ask one question against a topic collection from the terminal.

  python scripts/run_rag.py "What is perimenopause?" --topic menopause --stream
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from medrag.cli import query_main

if __name__ == "__main__":
    load_dotenv()
    sys.exit(query_main())
