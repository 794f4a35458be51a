"""Aggregator-side dropout recovery.

Surviving clients answer an unmask request with the shares they hold of the
dropped clients' seeds (see :meth:`SecAggSession.provide_unmasking_shares`).
Given at least ``threshold`` such payloads the aggregator can rebuild each
dropped seed and, from it, the exact mask that client added.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import InsufficientSharesError
from .masking import derive_mask
from .serialization import deserialize_unmasking_shares
from .shamir import Share, reconstruct_secret

logger = logging.getLogger(__name__)


def collect_unmasking_shares(
    payloads: Iterable[bytes],
    total_clients: Optional[int] = None,
) -> Dict[int, List[Share]]:
    """Group the shares in many unmasking payloads by seed owner."""
    by_owner: Dict[int, List[Share]] = {}
    senders = set()
    for payload in payloads:
        sender, entries = deserialize_unmasking_shares(payload, total_clients=total_clients)
        if sender in senders:
            logger.warning("SecAgg: duplicate unmasking payload from client %d ignored", sender)
            continue
        senders.add(sender)
        for owner, share in entries.items():
            by_owner.setdefault(owner, []).append(share)
    return by_owner


def recover_seed(shares: Sequence[Share], threshold: int) -> List[int]:
    """Rebuild a seed from its shares, failing loudly when too few are present."""
    if len(shares) < threshold:
        raise InsufficientSharesError(
            f"{len(shares)} share(s) available, threshold is {threshold}"
        )
    return reconstruct_secret(shares, threshold)


def recover_dropped_masks(
    payloads: Iterable[bytes],
    threshold: int,
    update_size: int,
    total_clients: Optional[int] = None,
) -> Dict[int, List[int]]:
    """Reconstruct the mask every dropped client added to an update.

    Returns ``{dropped_index: mask}`` with each mask sized for an
    *update_size*-byte update, ready for :func:`~octomil_secagg.masking.unmask_update`.
    """
    masks: Dict[int, List[int]] = {}
    for owner, shares in sorted(collect_unmasking_shares(payloads, total_clients).items()):
        seed = recover_seed(shares, threshold)
        masks[owner] = derive_mask(seed, owner, update_size)
        logger.info(
            "SecAgg: recovered mask of dropped client %d from %d share(s)",
            owner,
            len(shares),
        )
    return masks
