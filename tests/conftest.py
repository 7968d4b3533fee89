import sys
from pathlib import Path


TESTS_DIR = Path(__file__).resolve().parent
ROOT_DIR = TESTS_DIR.parent

for path in (ROOT_DIR, TESTS_DIR):
    value = str(path)
    if value not in sys.path:
        sys.path.insert(0, value)
