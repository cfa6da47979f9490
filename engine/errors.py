"""
Flow engine error taxonomy.

Every failure the engine can report is one of these types.
The webhook boundary maps them to provider-facing responses;
nothing here knows about HTTP.
"""

from typing import List, Optional


class FlowEngineError(Exception):
    """Base class for all engine errors."""
    pass


class ConfigNotFound(FlowEngineError):
    """Channel is missing or inactive. No execution is touched."""

    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        super().__init__(f"Channel config not found or inactive: {channel_id}")


class DuplicateMessage(FlowEngineError):
    """Inbound message id was already processed."""

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Message already processed: {message_id}")


class NoMatchingFlow(FlowEngineError):
    """No published flow on the channel matches the inbound message."""
    pass


class NodeExecutionError(FlowEngineError):
    """A node failed while executing (gateway, API call, expression...)."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        node_type: Optional[str] = None,
    ):
        self.node_id = node_id
        self.node_type = node_type
        super().__init__(message)


class ExpressionError(NodeExecutionError):
    """A setVariable expression could not be parsed or evaluated."""
    pass


class GatewayError(NodeExecutionError):
    """The messaging gateway rejected or failed a send."""
    pass


class UnsupportedNodeType(FlowEngineError):
    """Node type is not part of the closed node tag set."""

    def __init__(self, node_type: str):
        self.node_type = node_type
        super().__init__(f"Unsupported node type: {node_type}")


class WaitTimeoutExpired(FlowEngineError):
    """A waitForReply suspension outlived its timeout."""

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Wait timeout expired for execution {execution_id}")


class ExecutionConflict(FlowEngineError):
    """
    Single-flight violation.

    Raised when creating a second non-terminal execution for the same
    (customer, channel) pair, or when saving over a newer version.
    """
    pass


class FlowValidationError(FlowEngineError):
    """Flow graph failed publish-time validation."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("Invalid flow: " + "; ".join(self.problems))
