"""
StakeProof core.

- merkle: domain-separated binary Merkle trees
- snapshot: delegation records -> two-level stake commitment
- consensus: operator ballot rounds over snapshot roots
- proofs: proof records, audits and the query index
"""
