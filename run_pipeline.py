"""Convenience shim to run the delivery metrics pipeline."""

from __future__ import annotations

import sys

from delivery_metrics.pipeline.runner import main as pipeline_main


if __name__ == "__main__":
    sys.exit(pipeline_main(sys.argv[1:]))
