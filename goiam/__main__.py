"""Allow ``python -m goiam``."""

import sys

from .cli import main


sys.exit(main())
