from __future__ import annotations

from webtrace.cli.main import main

raise SystemExit(main())
