# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""``python -m location_blocker``."""

import sys

from .cli import main

sys.exit(main())
