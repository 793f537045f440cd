"""
Rotor Block Dissemination Model

Erasure-coded blocks are modelled abstractly: a block is split into
``n = ceil(k * r)`` identifiable chunks, each carrying a content hash and
the set of validators confirmed to hold it. Any ``k`` available chunks
reconstruct the block. Relays for every chunk are sampled with probability
proportional to stake from a generator seeded per (seed, slot, block).

The proposer is not counted as a holder: availability measures how far a
block has been disseminated, not whether its leader has it.
"""

import hashlib
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, FrozenSet, List, Tuple

import numpy as np

BLOCK_STRIDE = 10


def canonical_block(slot: int) -> int:
    """Block id an honest leader proposes for a slot"""
    return slot * BLOCK_STRIDE


def conflicting_block(slot: int) -> int:
    """Alternative block id used by equivocating leaders and voters"""
    return slot * BLOCK_STRIDE + 1


def chunk_hash(slot: int, block: int, index: int) -> str:
    return hashlib.sha256(f"{slot}:{block}:{index}".encode()).hexdigest()[:16]


@dataclass(frozen=True)
class Chunk:
    """One erasure-coded fragment of a block"""
    index: int
    content_hash: str
    holders: FrozenSet[int] = frozenset()

    @property
    def available(self) -> bool:
        return bool(self.holders)

    def to_dict(self) -> Dict[str, Any]:
        return {'index': self.index, 'content_hash': self.content_hash,
                'holders': sorted(self.holders)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        return cls(data['index'], data['content_hash'], frozenset(data['holders']))


@dataclass(frozen=True)
class ErasureCodedBlock:
    """A proposed block and the availability of its chunks"""
    slot: int
    block: int
    proposer: int
    redundancy: float
    threshold: int
    chunks: Tuple[Chunk, ...]
    proposed_at: int
    reconstructed: bool = False

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    @property
    def available_count(self) -> int:
        return sum(1 for chunk in self.chunks if chunk.available)

    def can_reconstruct(self) -> bool:
        return self.available_count >= self.threshold

    def verify_chunk(self, index: int, content_hash: str) -> bool:
        return 0 <= index < len(self.chunks) and self.chunks[index].content_hash == content_hash

    def with_holders(self, index: int, holders: FrozenSet[int]) -> "ErasureCodedBlock":
        """Copy with extra holders for one chunk; reconstruction is sticky"""
        chunk = self.chunks[index]
        chunks = list(self.chunks)
        chunks[index] = replace(chunk, holders=chunk.holders | holders)
        updated = replace(self, chunks=tuple(chunks))
        return replace(updated, reconstructed=self.reconstructed or updated.can_reconstruct())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'slot': self.slot,
            'block': self.block,
            'proposer': self.proposer,
            'redundancy': self.redundancy,
            'threshold': self.threshold,
            'chunks': [c.to_dict() for c in self.chunks],
            'proposed_at': self.proposed_at,
            'reconstructed': self.reconstructed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErasureCodedBlock":
        return cls(data['slot'], data['block'], data['proposer'], data['redundancy'],
                   data['threshold'], tuple(Chunk.from_dict(c) for c in data['chunks']),
                   data['proposed_at'], data['reconstructed'])


@dataclass(frozen=True)
class RelayAssignment:
    """Relays responsible for propagating each chunk of a block"""
    slot: int
    block: int
    chunk_relays: Tuple[Tuple[int, ...], ...]

    def relays_for(self, index: int) -> Tuple[int, ...]:
        return self.chunk_relays[index]

    def by_validator(self) -> Dict[int, Tuple[int, ...]]:
        """Mapping validator -> chunk indices it must relay"""
        assignment: Dict[int, List[int]] = {}
        for index, relays in enumerate(self.chunk_relays):
            for relay in relays:
                assignment.setdefault(relay, []).append(index)
        return {v: tuple(chunks) for v, chunks in sorted(assignment.items())}

    def to_dict(self) -> Dict[str, Any]:
        return {'slot': self.slot, 'block': self.block,
                'chunk_relays': [list(r) for r in self.chunk_relays]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelayAssignment":
        return cls(data['slot'], data['block'], tuple(tuple(r) for r in data['chunk_relays']))


def chunk_count(threshold: int, redundancy: float) -> int:
    return math.ceil(round(threshold * redundancy, 9))


def create_erasure_coded_block(slot: int, block: int, proposer: int, redundancy: float,
                               threshold: int, proposed_at: int) -> ErasureCodedBlock:
    """Encode a block into ceil(k * r) chunks, none disseminated yet"""
    chunks = tuple(Chunk(i, chunk_hash(slot, block, i))
                   for i in range(chunk_count(threshold, redundancy)))
    return ErasureCodedBlock(slot, block, proposer, redundancy, threshold, chunks, proposed_at)


def sample_relays(stakes: Dict[int, int], slot: int, block: int, chunks: int,
                  sample_size: int, seed: int) -> RelayAssignment:
    """Stake-weighted relay sample (without replacement) for every chunk.

    With no staked candidate every chunk gets an empty relay set.
    """
    ids = sorted(v for v, stake in stakes.items() if stake > 0)
    if not ids:
        return RelayAssignment(slot, block, tuple(() for _ in range(chunks)))
    weights = np.array([stakes[v] for v in ids], dtype=float)
    p = weights / weights.sum()
    size = min(sample_size, len(ids))
    rng = np.random.default_rng([seed, slot, block])

    chunk_relays = []
    for _ in range(chunks):
        picks = rng.choice(len(ids), size=size, replace=False, p=p)
        chunk_relays.append(tuple(sorted(int(ids[i]) for i in picks)))
    return RelayAssignment(slot, block, tuple(chunk_relays))
