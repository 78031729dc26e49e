"""Protocol definitions for the chat transport boundary."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class TransportAdapter(Protocol):
    """Outbound side of a chat transport.

    The inbound side calls ``Orchestrator.handle_message(party_id, text)``
    once per received message.
    """

    async def deliver(self, party_ids: list[str], payload: str) -> None:
        """Send ``payload`` to every party.

        Fire-and-forget per recipient: a failed send is logged by the
        transport and does not stop delivery to the remaining parties.
        """
        ...
