"""Allow ``python -m reduction_bench``."""

from .cli import main

raise SystemExit(main())
