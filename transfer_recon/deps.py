"""Common FastAPI dependencies for consistent type annotations.

Usage:
    from transfer_recon.deps import TransferService

    async def my_endpoint(service: TransferService):
        ...
"""

from typing import Annotated

from fastapi import Depends

from transfer_recon.database import get_session_maker
from transfer_recon.services.fx import CurrencyConverter, ExchangeRateClient
from transfer_recon.services.storage import TransactionStore
from transfer_recon.services.transfer_service import TransferMatchingService

# One converter per process so the rate cache survives across requests.
_converter = CurrencyConverter(ExchangeRateClient())


def get_transaction_store() -> TransactionStore:
    return TransactionStore(get_session_maker())


def get_currency_converter() -> CurrencyConverter:
    return _converter


def get_transfer_service(
    store: Annotated[TransactionStore, Depends(get_transaction_store)],
    converter: Annotated[CurrencyConverter, Depends(get_currency_converter)],
) -> TransferMatchingService:
    return TransferMatchingService(store, converter)


TransferService = Annotated[TransferMatchingService, Depends(get_transfer_service)]

__all__ = ["TransferService", "get_currency_converter", "get_transaction_store", "get_transfer_service"]
