"""
Interaction identity.

An interaction is identified by (ligand, receptor, sender, receiver) only, so
the same interaction prioritized in different contrasts/groups shares one key.
Joins use the four key columns; the underscore-joined id string is for
display only, since gene symbols may themselves contain underscores.
"""

from __future__ import annotations

from dataclasses import dataclass

import pandas as pd

KEY_COLUMNS = ["ligand", "receptor", "sender", "receiver"]


@dataclass(frozen=True, order=True)
class InteractionKey:
    """Composite interaction key."""

    ligand: str
    receptor: str
    sender: str
    receiver: str

    @property
    def display(self) -> str:
        return f"{self.ligand}_{self.receptor}_{self.sender}_{self.receiver}"

    def __str__(self) -> str:
        return self.display

    @classmethod
    def from_record(cls, record) -> "InteractionKey":
        return cls(*(str(record[c]) for c in KEY_COLUMNS))


def add_interaction_id(df: pd.DataFrame, column: str = "id") -> pd.DataFrame:
    """Return a copy of df with the display id column added."""
    out = df.copy()
    if out.empty:
        out[column] = pd.Series(dtype=str)
        return out
    out[column] = (
        out["ligand"].astype(str) + "_" + out["receptor"].astype(str) + "_"
        + out["sender"].astype(str) + "_" + out["receiver"].astype(str)
    )
    return out


def interaction_keys(df: pd.DataFrame) -> list[InteractionKey]:
    """Keys of every row, in row order."""
    return [InteractionKey.from_record(record) for record in df[KEY_COLUMNS].to_dict("records")]
