#!/usr/bin/env python3
"""
CastTidy.py
═══════════

Cppcheck addon wrapper around ``cast_tidy``: reports method-style casts
(``x.cast<T>()``) and proposes the free-function form (``cast<T>(x)``).

Invoke::

    cppcheck --addon=addons/CastTidy.py src/
    cppcheck --dump myfile.cpp
    python CastTidy.py --output gcc myfile.cpp.dump

``cast_tidy`` must be importable (``pip install -e .``); ``cppcheckdata``
comes from cppcheck's own addons directory.

License: MIT
"""

import sys

from cast_tidy.checker import main

if __name__ == "__main__":
    sys.exit(main())
