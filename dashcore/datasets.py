from __future__ import annotations

import hashlib
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from dashcore.config import CompilerOptions


logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class DatasetAsset:
    asset_id: str
    schema: Dict[str, str]
    frame: pd.DataFrame

    @property
    def columns(self) -> List[str]:
        return list(self.schema)

    def __len__(self) -> int:
        return len(self.frame)

    def records(self) -> List[Dict[str, Any]]:
        return [{k: to_json_value(v) for k, v in row.items()} for row in self.frame.to_dict(orient="records")]

    def as_dict(self) -> Dict[str, Any]:
        return {"assetId": self.asset_id, "schema": dict(self.schema), "rows": self.records()}


def drop_duplicate_columns(df: pd.DataFrame) -> pd.DataFrame:
    return df.loc[:, ~df.columns.duplicated()]


def as_frame(data: Any) -> pd.DataFrame:
    """Accept a DataFrame, a list of records or a column dict."""
    if isinstance(data, pd.DataFrame):
        df = data.copy()
    elif isinstance(data, Mapping):
        df = pd.DataFrame(dict(data))
    else:
        df = pd.DataFrame(list(data or []))
    df.columns = [str(c) for c in df.columns]
    return drop_duplicate_columns(df).reset_index(drop=True)


def column_type(series: pd.Series) -> str:
    if pd.api.types.is_bool_dtype(series):
        return "boolean"
    if pd.api.types.is_numeric_dtype(series):
        return "numeric"
    if pd.api.types.is_datetime64_any_dtype(series):
        return "datetime"
    return "string"


def infer_schema(df: pd.DataFrame) -> Dict[str, str]:
    return {col: column_type(df[col]) for col in df.columns}


def to_json_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (np.bool_, bool)):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, (np.floating, float)):
        out = float(value)
        if math.isnan(out) or math.isinf(out):
            return None
        if out.is_integer() and abs(out) < 2**53:
            return int(out)
        return out
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    if value is pd.NA or value is pd.NaT:
        return None
    return value


def content_hash(df: pd.DataFrame, schema: Optional[Mapping[str, str]] = None) -> str:
    """SHA-256 over the schema and rows, independent of column order."""
    cols = sorted(df.columns)
    schema = schema or infer_schema(df)
    payload = {
        "schema": [[c, schema[c]] for c in cols],
        "rows": [[to_json_value(v) for v in row] for row in df[cols].itertuples(index=False, name=None)],
    }
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


class DatasetStore:
    """Content-addressed store: structurally identical datasets share one asset."""

    def __init__(self, options: Optional[CompilerOptions] = None):
        self.options = options or CompilerOptions()
        self._assets: Dict[str, DatasetAsset] = {}
        self._hits = 0

    def intern(self, data: Any) -> str:
        df = as_frame(data)
        schema = infer_schema(df)
        digest = content_hash(df, schema)
        asset_id = "ds_" + digest[: self.options.asset_id_length]
        if asset_id in self._assets:
            self._hits += 1
            logger.debug("Dataset %s already interned (%d rows)", asset_id, len(df))
            return asset_id
        df = df[sorted(df.columns)].copy()
        self._assets[asset_id] = DatasetAsset(asset_id=asset_id, schema={c: schema[c] for c in df.columns}, frame=df)
        return asset_id

    def get(self, asset_id: str) -> DatasetAsset:
        return self._assets[asset_id]

    def __contains__(self, asset_id: object) -> bool:
        return asset_id in self._assets

    def __len__(self) -> int:
        return len(self._assets)

    def __iter__(self) -> Iterable[DatasetAsset]:
        return iter(self._assets.values())

    @property
    def dedup_hits(self) -> int:
        return self._hits

    def payload(self) -> List[Dict[str, Any]]:
        return [asset.as_dict() for asset in self._assets.values()]
