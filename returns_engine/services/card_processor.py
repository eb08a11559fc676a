"""
Card Processor - Razorpay Integration

Issues card refunds against the processor payment captured at sale time.
"""
import asyncio
import logging
from typing import Optional

from returns_engine.config import Settings, get_settings
from returns_engine.exceptions import ExternalProcessorError
from returns_engine.services.ports import ProcessorRefund

logger = logging.getLogger(__name__)


class RazorpayCardProcessor:
    """
    Card refunds through Razorpay.

    The SDK is synchronous; calls run in a worker thread and the settlement
    waits on them.
    """

    def __init__(self, settings: Optional[Settings] = None, client=None):
        self.settings = settings or get_settings()
        if client is None and self.is_configured():
            import razorpay

            client = razorpay.Client(
                auth=(self.settings.RAZORPAY_KEY_ID, self.settings.RAZORPAY_KEY_SECRET)
            )
        self.client = client

    def is_configured(self) -> bool:
        return bool(self.settings.RAZORPAY_KEY_ID and self.settings.RAZORPAY_KEY_SECRET)

    def _refund_sync(self, payment_id: str, amount_cents: int, reason: str) -> dict:
        return self.client.payment.refund(
            payment_id,
            {
                "amount": amount_cents,
                "notes": {"reason": reason},
            }
        )

    async def refund(
        self, processor_reference: str, amount_cents: int, reason: str
    ) -> ProcessorRefund:
        """
        Refund ``amount_cents`` of a captured payment.

        Raises:
            ExternalProcessorError: If the processor is not configured or the call fails
        """
        if self.client is None:
            raise ExternalProcessorError(
                "Card processor is not configured",
                {"processor_reference": processor_reference, "amount_cents": amount_cents},
            )

        try:
            refund = await asyncio.to_thread(
                self._refund_sync, processor_reference, amount_cents, reason
            )
        except Exception as e:
            logger.error(f"Refund failed for payment {processor_reference}: {e}")
            raise ExternalProcessorError(
                f"Card refund failed: {e}",
                {
                    "processor_reference": processor_reference,
                    "amount_cents": amount_cents,
                    "processor_message": str(e),
                },
            ) from e

        logger.info(f"Refund initiated: {refund['id']} for payment {processor_reference}")
        return ProcessorRefund(
            refund_id=refund["id"],
            amount_cents=refund.get("amount", amount_cents),
            status=refund.get("status", "processed"),
        )
