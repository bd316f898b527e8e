"""Allow running as ``python -m pxtools``."""

import sys

from pxtools.cli import main

sys.exit(main())
