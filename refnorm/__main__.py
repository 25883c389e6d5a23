"""Allow ``python -m refnorm``."""

import sys

from .cli import main

sys.exit(main())
