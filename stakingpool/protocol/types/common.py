from enum import Enum

class ActionType(str, Enum):
    STAKE = "STAKE"
    TRANSFER = "TRANSFER"
    FUNCTION_CALL = "FUNCTION_CALL"

class PromiseStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"

class ProtocolError(Exception):
    pass

class ValidationError(ProtocolError, ValueError):
    """Rejected input. The whole invocation is rolled back."""
    pass

class UnauthorizedError(ValidationError):
    pass

class DegenerateStateError(ProtocolError, ArithmeticError):
    """Division by an empty pool total. Unreachable while the guarantee fund holds."""
    pass
