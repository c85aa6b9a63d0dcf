# backend/callflow/models/__init__.py
from callflow.models.call import (
    CallContext,
    CallOutcome,
    CallRequest,
    CallStatus,
    PlacedCall,
    Turn,
    TurnRole,
    TERMINAL_STATUSES,
    is_terminal_status,
)

__all__ = [
    'CallContext',
    'CallOutcome',
    'CallRequest',
    'CallStatus',
    'PlacedCall',
    'Turn',
    'TurnRole',
    'TERMINAL_STATUSES',
    'is_terminal_status',
]
