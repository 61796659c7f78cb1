"""streamcap entry point.

Supports: python -m streamcap
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
