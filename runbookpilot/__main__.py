"""Allow ``python -m runbookpilot``."""

import sys

from runbookpilot.cli import main

sys.exit(main())
