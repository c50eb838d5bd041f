"""Run the knowstore command line with ``python -m knowstore``."""

import sys

from knowstore.cli import main

sys.exit(main())
