"""
Sender-receiver interaction records.
"""

from multiniche_pipeline.interaction.keys import (
    KEY_COLUMNS,
    InteractionKey,
    add_interaction_id,
    interaction_keys,
)
from multiniche_pipeline.interaction.linker import (
    SenderReceiverInfo,
    SenderReceiverLinker,
    lr_pb_prod_matrix,
)

__all__ = [
    "KEY_COLUMNS",
    "InteractionKey",
    "add_interaction_id",
    "interaction_keys",
    "SenderReceiverInfo",
    "SenderReceiverLinker",
    "lr_pb_prod_matrix",
]
