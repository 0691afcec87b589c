"""Run the rebuild supervisor."""

import sys

from rebuild_supervisor.main import main

if __name__ == "__main__":
    sys.exit(main())
