"""Allow ``python -m tpsim``."""
from __future__ import annotations

from .runtime.cli import main

raise SystemExit(main())
