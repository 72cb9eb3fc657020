"""
Settlement idempotency keys.

A settlement event delivered more than once must be applied once. Callers
that have a stable id for the event (a client request id, a message id)
derive the key from it; the key is stored per expense with a unique
constraint and a replayed key makes the settlement call a no-op.
"""

from uuid import UUID

_SEPARATOR = ":"


def generate_settlement_key(
    operation: str,
    expense_id: UUID | str,
    participant_id: str,
    request_id: UUID | str,
) -> str:
    """
    Generate an idempotency key for a settlement request.

    Format: operation:expense_id:participant_id:request_id

    Example:
        >>> generate_settlement_key("settle_own_debt", "exp-1", "bob", "req-9")
        'settle_own_debt:exp-1:bob:req-9'
    """
    return _SEPARATOR.join((operation, str(expense_id), participant_id, str(request_id)))


def parse_settlement_key(key: str) -> tuple[str, str, str, str]:
    """
    Parse a settlement key into (operation, expense_id, participant_id, request_id).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(_SEPARATOR, 3)
    if len(parts) != 4 or not all(parts):
        raise ValueError(f"Invalid settlement key format: {key}")
    return parts[0], parts[1], parts[2], parts[3]
