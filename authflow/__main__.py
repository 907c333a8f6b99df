"""Allow ``python -m authflow``."""

import sys

from .cli import main


sys.exit(main())
