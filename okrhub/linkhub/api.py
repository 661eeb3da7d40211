import requests
from typing import List, Union
from requests.exceptions import ConnectionError, Timeout, RequestException
from urllib3.exceptions import ProtocolError

from okrhub.errors import DeliveryFailure, PartialBatchFailure
from okrhub.linkhub.signing import build_headers
from okrhub.logging_config import get_logger
from okrhub.payload_policy import serialize_payload
from okrhub.payloads import BatchItem, build_batch_payload
from okrhub.results import BatchDeliveryResult, BatchItemResult, DeliveryResult

logger = get_logger(__name__)


class LinkHubAPI:
    """LinkHub ingest connection layer utilizing a requests session."""
    INGEST_PATH = "/ingest/okr/v1"

    def __init__(self, timeout=30):
        self.timeout = timeout
        # Reusable HTTP session
        self.session = requests.Session()

    def _post(self, url: str, body: str, api_key_prefix: str, signing_secret: str):
        """
        POST a signed body and return the decoded JSON response.

        The body string is sent as is: it is the exact text the signature
        was computed over.

        Raises:
            DeliveryFailure: on transport errors, non-2xx statuses and
                responses that are not JSON
        """
        headers = build_headers(body, api_key_prefix, signing_secret)
        try:
            r = self.session.post(url, data=body.encode("utf-8"), headers=headers, timeout=self.timeout)
        except (ConnectionError, ProtocolError, Timeout) as e:
            raise DeliveryFailure(str(e)) from e
        except RequestException as e:
            raise DeliveryFailure(str(e)) from e

        if not 200 <= r.status_code < 300:
            raise DeliveryFailure(f"HTTP {r.status_code}: {r.text}", status_code=r.status_code)

        try:
            data = r.json()
        except ValueError as e:
            raise DeliveryFailure(f"Unparsable response from LinkHub: {e}", status_code=r.status_code) from e
        if not isinstance(data, dict):
            raise DeliveryFailure("Unexpected response from LinkHub: not a JSON object", status_code=r.status_code)
        return data

    def _url(self, endpoint_url: str, path: str) -> str:
        return f"{endpoint_url.rstrip('/')}{self.INGEST_PATH}/{path}"

    # -------------------------
    # Single entity
    # -------------------------
    def deliver(self, endpoint_url, api_key_prefix, signing_secret, entity_kind, payload) -> DeliveryResult:
        """
        Send one entity to ``{endpoint}/ingest/okr/v1/{kind}``.

        Args:
            payload: the stored JSON string (sent byte for byte) or a dict,
                which is serialized first

        Returns:
            DeliveryResult: failures are reported in the result, never raised
        """
        kind = getattr(entity_kind, "value", entity_kind)
        body = payload if isinstance(payload, str) else serialize_payload(payload)
        url = self._url(endpoint_url, kind)

        try:
            data = self._post(url, body, api_key_prefix, signing_secret)
            if not data.get("success"):
                raise DeliveryFailure(data.get("error") or "LinkHub rejected the entity")
        except DeliveryFailure as e:
            logger.warning("LinkHub delivery failed", url=url, entity_kind=kind, status_code=e.status_code, error=str(e))
            return DeliveryResult(success=False, error=str(e))

        logger.info(
            "LinkHub delivery succeeded",
            entity_kind=kind,
            external_id=data.get("externalId"),
            action=data.get("action"),
        )
        return DeliveryResult(
            success=True,
            external_id=data.get("externalId") or "",
            remote_id=data.get("linkHubId") or data.get("remoteId"),
            action=data.get("action"),
        )

    # -------------------------
    # Batch
    # -------------------------
    def deliver_batch(self, endpoint_url, api_key_prefix, signing_secret,
                      batch: Union[List[BatchItem], dict]) -> BatchDeliveryResult:
        """
        Send many entities in one call to ``{endpoint}/ingest/okr/v1/batch``.

        A response whose envelope says failure while some items were
        accepted is a partial failure: it is logged and returned with the
        per-item results so the caller can settle each item on its own.
        """
        envelope = batch if isinstance(batch, dict) else build_batch_payload(batch)
        body = serialize_payload(envelope)
        url = self._url(endpoint_url, "batch")

        try:
            data = self._post(url, body, api_key_prefix, signing_secret)
        except DeliveryFailure as e:
            logger.warning("LinkHub batch delivery failed", url=url, status_code=e.status_code, error=str(e))
            return BatchDeliveryResult(success=False, errors=[str(e)])

        results = [
            BatchItemResult(
                entity_kind=item.get("entityType") or item.get("entityKind") or "",
                external_id=item.get("externalId") or "",
                remote_id=item.get("linkHubId") or item.get("remoteId"),
                action=item.get("action"),
                error=item.get("error"),
            )
            for item in data.get("results") or []
        ]
        result = BatchDeliveryResult(
            success=bool(data.get("success")),
            results=results,
            errors=list(data.get("errors") or []),
        )

        if result.is_partial:
            partial = PartialBatchFailure(
                succeeded=sum(1 for item in results if item.success),
                failed=sum(1 for item in results if not item.success),
                errors=result.errors,
            )
            logger.warning(str(partial), succeeded=partial.succeeded, failed=partial.failed, errors=partial.errors)
        else:
            logger.info("LinkHub batch delivered", success=result.success, items=len(results))
        return result
