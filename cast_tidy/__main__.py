"""Entry point for ``python -m cast_tidy``."""

import sys

from cast_tidy.checker import main

if __name__ == "__main__":
    sys.exit(main())
