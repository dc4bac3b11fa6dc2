"""
Receipt Extraction Interface

The bot core only needs one thing from a vision backend: image bytes in,
StructuredReceipt out. Anything else about the backend stays behind this
interface.
"""

from abc import ABC, abstractmethod

from expense_bot.models.finance import StructuredReceipt


class ReceiptExtractorInterface(ABC):
    """Abstract interface for receipt extraction."""

    @abstractmethod
    async def extract_receipt(self, image_bytes: bytes) -> StructuredReceipt:
        """
        Extract structured data from a receipt photo.

        Args:
            image_bytes: Raw image bytes as downloaded from the chat

        Returns:
            Validated receipt with a normalised date and overall category

        Raises:
            ExtractionError: With kind INVALID_RESPONSE if the model output
                is unusable, TIMEOUT/UNAVAILABLE for transport problems
        """
        pass
