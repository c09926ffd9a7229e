from typing import Any, Dict, Optional

PROTOCOL_VERSION = "1.0"

ERROR_CODES: Dict[str, int] = {
    "ERROR": 1,
    "INVALID_INPUT": 2,
    "INVALID_ARGUMENT": 2,
    "MARSHAL_ERROR": 2,
    "NOT_FOUND": 2,
    "UNDEFINED_VARIABLE": 3,
    "UNKNOWN_OPERATION": 4,
    "UNDEFINED_USER_FUNCTION": 4,
    "OPERATION_FAILED": 5,
    "SCRIPT_ERROR": 6,
    "BRIDGE_UNAVAILABLE": 7,
}


class BridgeOperationError(Exception):
    code = "ERROR"

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class UndefinedVariable(BridgeOperationError):
    def __init__(self, name: str, message: Optional[str] = None):
        super().__init__("UNDEFINED_VARIABLE", message or f"Undefined variable: {name}")
        self.name = name


class UnknownOperation(BridgeOperationError):
    def __init__(self, name: str):
        super().__init__("UNKNOWN_OPERATION", f"Unknown operation: {name}")
        self.name = name


class UnknownOperationAttribute(UnknownOperation, AttributeError):
    """Unknown name on a bridge namespace; also an AttributeError so ``hasattr`` works."""


class UndefinedUserFunction(BridgeOperationError):
    def __init__(self, name: str):
        super().__init__("UNDEFINED_USER_FUNCTION", f"User function not found: {name}")
        self.name = name


class MarshalError(BridgeOperationError):
    def __init__(self, message: str):
        super().__init__("MARSHAL_ERROR", message)


class ArgumentError(BridgeOperationError):
    def __init__(self, operation: str, message: str, arguments: str = ""):
        super().__init__("INVALID_ARGUMENT", f"{operation}: {message}")
        self.operation = operation
        self.arguments = arguments

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["operation"] = self.operation
        data["arguments"] = self.arguments
        return data


class OperationError(BridgeOperationError):
    """A host operation failed; the original exception is kept as ``__cause__``."""

    def __init__(self, operation: str, arguments: str, cause: BaseException):
        detail = str(cause) or type(cause).__name__
        super().__init__("OPERATION_FAILED", f"{operation}({arguments}) failed: {detail}")
        self.operation = operation
        self.arguments = arguments
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["operation"] = self.operation
        data["arguments"] = self.arguments
        data["cause"] = type(self.cause).__name__
        return data


class ScriptExecutionError(BridgeOperationError):
    """Raised when the script's own code fails outside of any bridge call."""

    def __init__(self, message: str, filename: str = "<script>", lineno: Optional[int] = None):
        location = f" at line {lineno}" if lineno is not None else ""
        super().__init__("SCRIPT_ERROR", f"Python error: {message}{location} in {filename}")
        self.filename = filename
        self.lineno = lineno
