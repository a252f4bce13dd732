# Ensure '<repo>/backend' is on sys.path so 'import app.*' works
# even when pytest is started from the repository root.
from pathlib import Path
import sys

_BACKEND_ROOT = Path(__file__).resolve().parent  # <repo>/backend
if str(_BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(_BACKEND_ROOT))

# Migrations import alembic's runtime context and are not test modules
collect_ignore_glob = [
    "alembic/*",
]
