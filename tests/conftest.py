import sys
from pathlib import Path


def pytest_configure():
    # Make the flat top-level modules (`arena`, `simulation`) importable without installing.
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))
