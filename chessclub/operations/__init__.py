"""
Operations Layer

Business logic that composes ledger calls into workflows. Operations
validate input, apply business rules and schedule post-write side effects;
the ledger underneath stays a plain data accessor.

Each operations module focuses on a specific domain:
- RatingEngine: Elo computation and full ledger replay
- GameOperations: recording, editing, verifying and deleting games
- ConsistencyCoordinator: player merges and identity reconciliation
- OwnershipOperations: player claim workflow
"""
