"""Entry point for `python -m intervention`."""

import sys

from .cli import main

sys.exit(main())
