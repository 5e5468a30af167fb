"""Allow ``python -m modelkeeper``."""

import sys

from .cli import main

sys.exit(main())
