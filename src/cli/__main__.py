"""Allow ``python -m src.cli`` to run the fragment client."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from src.cli.main import main

sys.exit(main())
