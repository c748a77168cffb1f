from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import pandas as pd


def table_exists(csv_path: str | Path) -> bool:
    """True when either the CSV or its ``.parquet`` sibling exists."""

    path = Path(csv_path)
    return path.exists() or path.with_suffix(".parquet").exists()


def read_table(
    csv_path: str | Path,
    *,
    dtype: Optional[Dict[str, Any]] = None,
    required: Iterable[str] = (),
) -> pd.DataFrame:
    """Load a table preferring Parquet with CSV fallback.

    Parameters
    ----------
    csv_path:
        Location of the canonical CSV file.  A ``<name>.parquet`` sibling
        takes precedence when present.
    dtype:
        Optional dtype mapping applied to the CSV reader.
    required:
        Column names that must be present; a ``ValueError`` lists the
        missing ones.
    """

    csv_path = Path(csv_path)
    pq_path = csv_path.with_suffix(".parquet")

    if pq_path.exists():
        frame = pd.read_parquet(pq_path)
    elif csv_path.exists():
        frame = pd.read_csv(csv_path, dtype=dtype, memory_map=True)
    else:
        raise FileNotFoundError(f"Dataset not found at {csv_path} (or {pq_path.name})")

    missing = [col for col in required if col not in frame.columns]
    if missing:
        raise ValueError(f"{csv_path.name} is missing required columns: {', '.join(missing)}")
    return frame
