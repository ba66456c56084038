"""Allow `python -m delivery_metrics.pipeline`."""

import sys

from .runner import main

sys.exit(main())
