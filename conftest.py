import sys
from pathlib import Path

# Allow running the test suite from a plain checkout (no install).
_SRC = Path(__file__).parent / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))
