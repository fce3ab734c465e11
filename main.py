from __future__ import annotations

import sys

from zero_trust_lab.cli import main


if __name__ == "__main__":
    sys.exit(main())
