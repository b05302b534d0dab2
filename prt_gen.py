#!/usr/bin/env python
"""CLI entry point for PRT precomputation."""

import sys

from prt_precompute.pipeline import main

if __name__ == "__main__":
    sys.exit(main())
