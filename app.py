#!/usr/bin/env python3
"""CDK App entry point for the Backstage GitOps infrastructure."""

import logging

from infrastructure.assembly import build_app

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = build_app()

app.synth()
