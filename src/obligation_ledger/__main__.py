"""Entry point for ``python -m obligation_ledger``."""

import sys

from obligation_ledger.cli import main

if __name__ == "__main__":
    sys.exit(main())
