"""0x meta-transaction quote / sign / submit.

Flow (one shot):
1. GET  /meta_transaction/v0/quote   -> zeroExTransaction + its hash
2. sign the hash with the taker's private key (EthSign)
3. POST /meta_transaction/v0/submit  with the transaction and signature
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import MetaTxConfig
from .exceptions import QuoteError, SubmitError
from .signing import ec_sign_hash

logger = logging.getLogger("zerox-harness")

QUOTE_PATH = "/meta_transaction/v0/quote"
SUBMIT_PATH = "/meta_transaction/v0/submit"


class MetaTxQuote(BaseModel):
    """Quote response. Fields beyond the two required ones are kept as-is."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    zero_ex_transaction_hash: str = Field(alias="zeroExTransactionHash")
    zero_ex_transaction: dict[str, Any] = Field(alias="zeroExTransaction")


class MetaTxClient:
    """Thin async client for the meta-transaction endpoints."""

    def __init__(self, api_url: str, api_key: str = "", timeout: float = 15.0):
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    @staticmethod
    async def _read_body(resp: aiohttp.ClientResponse) -> Any:
        text = await resp.text()
        try:
            return json.loads(text)
        except ValueError:
            return text

    async def get_quote(
        self,
        *,
        buy_token: str,
        sell_token: str,
        buy_amount: str,
        taker_address: str,
    ) -> MetaTxQuote:
        params = {
            "buyToken": buy_token,
            "sellToken": sell_token,
            "buyAmount": buy_amount,
            "takerAddress": taker_address,
        }
        session = self._get_session()
        try:
            async with session.get(f"{self._api_url}{QUOTE_PATH}", params=params) as resp:
                status = resp.status
                body = await self._read_body(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise QuoteError(f"Quote request failed: {e}") from e

        if status >= 400:
            raise QuoteError(f"Quote failed: HTTP {status}: {body}")
        if not isinstance(body, dict):
            raise QuoteError(f"Quote response is not a JSON object: {body!r}")
        try:
            return MetaTxQuote.model_validate(body)
        except ValidationError as e:
            raise QuoteError(f"Malformed quote response: {e}") from e

    async def submit(
        self, zero_ex_transaction: dict[str, Any], signature: str
    ) -> dict[str, Any]:
        payload = {"zeroExTransaction": zero_ex_transaction, "signature": signature}
        headers = {"0x-api-key": self._api_key} if self._api_key else {}
        session = self._get_session()
        try:
            async with session.post(
                f"{self._api_url}{SUBMIT_PATH}", json=payload, headers=headers
            ) as resp:
                status = resp.status
                body = await self._read_body(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SubmitError(f"Submit request failed: {e}") from e

        if status >= 400:
            raise SubmitError(f"Submit failed: HTTP {status}", status=status, body=body)
        return body if isinstance(body, dict) else {"response": body}

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session:
            await self._session.close()
            self._session = None


async def run_meta_tx(
    config: MetaTxConfig, client: MetaTxClient | None = None
) -> dict[str, Any]:
    """Quote, sign and submit one meta-transaction. Returns the submit response."""
    owns_client = client is None
    client = client or MetaTxClient(config.api_url, config.api_key)
    try:
        quote = await client.get_quote(
            buy_token=config.buy_token,
            sell_token=config.sell_token,
            buy_amount=config.buy_amount,
            taker_address=config.taker_address,
        )
        data = quote.model_dump(mode="json", by_alias=True)
        logger.info(f"DATA: {json.dumps(data)}")

        signature = ec_sign_hash(
            config.taker_private_key,
            quote.zero_ex_transaction_hash,
            config.taker_address,
        )
        body = {"zeroExTransaction": quote.zero_ex_transaction, "signature": signature}
        logger.info(json.dumps(body))

        try:
            response = await client.submit(quote.zero_ex_transaction, signature)
        except SubmitError as e:
            logger.error(f"ERROR {e}: {json.dumps(e.body)}")
            raise
        logger.info(f"RESPONSE: {json.dumps(response)}")
        return response
    finally:
        if owns_client:
            await client.close()
