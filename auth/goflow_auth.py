# ================================================================
#  UPSTREAM AUTH HEADERS
#  ---------------------------------------------------------------
#  - GoFlow: bearer token + beta contact header
#  - Magento PO export: static API key header
# ================================================================

import logging
from typing import Dict

import config

logger = logging.getLogger(__name__)


class GoFlowAuth:
    def __init__(self, api_key=None, contact=None):
        self._api_key = api_key
        self._contact = contact

    @property
    def api_key(self) -> str:
        if not self._api_key:
            self._api_key = config._req("GOFLOW_API_KEY")
        return self._api_key

    def headers(self, include_content_type: bool = True) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        contact = self._contact if self._contact is not None else config.GOFLOW_CONTACT
        if contact:
            headers["X-Beta-Contact"] = contact
        # Report file downloads reject a JSON content type
        if include_content_type:
            headers["Content-Type"] = "application/json"
        return headers


class MagentoAuth:
    def __init__(self, api_key=None):
        self._api_key = api_key

    def headers(self) -> Dict[str, str]:
        if not self._api_key:
            self._api_key = config._req("MAGENTO_API_KEY")
        return {"X-API-KEY": self._api_key}
