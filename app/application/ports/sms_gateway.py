from typing import Protocol


class SmsGateway(Protocol):
    def send(self, phone: str, message: str) -> str:
        """Dispatch a message and return the provider message id.

        Implementations raise DeliveryFailed when the provider rejects the message.
        """
        ...
