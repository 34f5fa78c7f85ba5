"""Entry point for ``python -m trip_sim``."""

import sys

from trip_sim.main import main

if __name__ == "__main__":
    sys.exit(main())
