import sys

from query_bridge.cli import main

sys.exit(main())  # type: ignore[call-arg]
