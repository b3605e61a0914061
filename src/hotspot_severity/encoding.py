"""
Explicit, versioned category -> integer code tables.

The table is built once from the training rows and stored with the model, so
scoring and explanation reuse exactly the same codes. A category that was not
seen during training is an error, not a silent coercion.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Tuple

import pandas as pd

ENCODING_VERSION = 1


class UnknownCategory(Exception):
    """Raised when a value has no code in the encoding table."""

    def __init__(self, column: str, values: Iterable):
        self.column = column
        self.values = sorted(str(v) for v in values)
        super().__init__(f"Unknown categories in column '{column}': {self.values[:10]}")


@dataclass(frozen=True)
class EncodingTable:
    """Ordinal codes per categorical column; code = position in the tuple."""
    columns: Mapping[str, Tuple[str, ...]]
    version: int = ENCODING_VERSION

    @classmethod
    def fit(cls, df: pd.DataFrame, categorical_columns: Iterable[str]) -> "EncodingTable":
        """Collect the sorted distinct labels of each categorical column."""
        columns = {}
        for col in categorical_columns:
            labels = df[col].dropna().astype(str).unique()
            columns[col] = tuple(sorted(labels))
        return cls(columns=columns)

    def codes(self, column: str) -> Dict[str, int]:
        return {label: code for code, label in enumerate(self.columns[column])}

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Return a copy of df with every encoded column replaced by its codes.

        Raises:
            UnknownCategory: If a column holds a label absent from the table.
        """
        out = df.copy()
        for col in self.columns:
            labels = out[col].astype(str)
            coded = labels.map(self.codes(col))
            unknown = coded.isna()
            if unknown.any():
                raise UnknownCategory(col, labels[unknown].unique())
            out[col] = coded.astype("int64")
        return out

    def decode(self, column: str, code: int) -> str:
        return self.columns[column][int(code)]

    def to_dict(self) -> dict:
        return {"version": self.version, "columns": {k: list(v) for k, v in self.columns.items()}}

    @classmethod
    def from_dict(cls, data: Mapping) -> "EncodingTable":
        version = int(data.get("version", ENCODING_VERSION))
        if version != ENCODING_VERSION:
            raise ValueError(f"Unsupported encoding table version {version}")
        return cls(
            columns={k: tuple(str(v) for v in values) for k, values in data["columns"].items()},
            version=version,
        )
