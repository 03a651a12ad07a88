import os
import sys


# Tests import `backend.*` as namespace packages, so the repo root must be on
# sys.path whether pytest starts from the root or from `backend/`.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

# Settings are read at import time; route tests never open the pool, they patch `get_conn`.
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "postgresql://localhost/cbtb_pos_test")
