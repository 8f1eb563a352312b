from .messages import (
    AddToCartCommand, Command, RetrySetLocationCommand, SearchCommand, SetLocationCommand,
    CommandReply, SearchResults, ServiceSearchUpdate, StatusUpdate,
)

__all__ = [
    "AddToCartCommand", "Command", "RetrySetLocationCommand", "SearchCommand", "SetLocationCommand",
    "CommandReply", "SearchResults", "ServiceSearchUpdate", "StatusUpdate",
]
