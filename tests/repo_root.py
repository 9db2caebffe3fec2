from __future__ import annotations

from pathlib import Path

# tests/ sits directly under the project root, next to aimeta_backend/ and aimeta_shared/.
REPO_ROOT = Path(__file__).resolve().parents[1]
