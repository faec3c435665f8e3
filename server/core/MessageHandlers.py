from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional

from server.core.MemoryTable import UserTable
from server.core.MessageTypes import echo_frame, incoming_frame
from shared.log import get_logger, log_relay_event

if TYPE_CHECKING:
    from server.core.ConnectionLink import ConnectionLink

logger = get_logger(__name__)


class DeliveryResult(str, Enum):
    DELIVERED = "delivered"
    RECIPIENT_OFFLINE = "recipient_offline"
    SENDER_UNKNOWN = "sender_unknown"
    SEND_FAILED = "send_failed"


class DirectMessageRouter:
    """
    Resolves a recipient name through the user table and delivers one
    directed message. Holds no state of its own beyond the table reference.
    """

    def __init__(self, users: UserTable):
        self.users = users

    async def deliver(
        self,
        sender: str,
        recipient: str,
        body: str,
        sender_link: Optional["ConnectionLink"] = None,
    ) -> DeliveryResult:
        """
        Route ``body`` from ``sender`` to ``recipient``.

        The sender always gets its echo line first. The recipient then gets
        the message, or the sender gets a "not online" error. A send that
        fails because a connection just dropped is logged and reported in the
        result; it is never raised.

        ``sender_link`` is the connection the message arrived on. When given,
        echo and errors go to it, and the message is dropped unless that link
        still holds ``sender`` in the user table (a displaced session gets a
        "signed in from another connection" error instead).
        """
        sender_record = self.users.lookup(sender)
        if sender_record is None:
            # only reachable if the sender was evicted mid-loop
            log_relay_event(logger, "warning", "Sender not in user table; dropping message",
                            username=sender, recipient=recipient)
            return DeliveryResult.SENDER_UNKNOWN

        if sender_link is None:
            sender_link = sender_record.link
        elif sender_record.link is not sender_link:
            log_relay_event(logger, "info", "Sender no longer holds its username; dropping message",
                            username=sender, recipient=recipient,
                            connection_id=sender_link.connection_id)
            await sender_link.on_session_replaced()
            return DeliveryResult.SENDER_UNKNOWN

        await sender_link.send_line(echo_frame(recipient, body))

        recipient_record = self.users.lookup(recipient)
        if recipient_record is None:
            await sender_link.on_error_user_not_online(recipient)
            log_relay_event(logger, "debug", "Recipient not online", username=sender, recipient=recipient)
            return DeliveryResult.RECIPIENT_OFFLINE

        if not await recipient_record.link.send_line(incoming_frame(sender, body)):
            log_relay_event(logger, "info", "Recipient disconnected during delivery",
                            username=sender, recipient=recipient)
            return DeliveryResult.SEND_FAILED

        log_relay_event(logger, "debug", "Delivered message", username=sender, recipient=recipient)
        return DeliveryResult.DELIVERED
