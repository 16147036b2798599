### formflow/esign/autentique_client.py

# Standard library imports
from typing import Any, Dict, List, Optional

# Third party imports
import requests

# Local imports
from formflow.core.config import settings
from formflow.core.exceptions import ExternalServiceException
from formflow.utils.logger import get_logger

logger = get_logger(__name__)

USER_AGENT = "FormFlow/2.0.0"


class AutentiqueClient:
    """
    Blocking REST client for the Autentique signature API.

    Every call is bounded by the configured timeout; non-2xx responses and
    transport errors raise ExternalServiceException.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or settings.autentique_api_key
        self.base_url = (base_url or settings.autentique_base_url).rstrip("/")
        self.timeout = timeout or settings.autentique_timeout
        self.session = session or requests.Session()

    def create_document(
        self,
        name: str,
        file: str,
        signers: List[Dict[str, Any]],
        sandbox: bool = False,
        auto_close: bool = True,
        send_automatic_email: bool = True,
    ) -> Dict[str, Any]:
        """
        Create a document for signature

        Args:
            name: Document name shown to signers
            file: Base64 encoded PDF
            signers: Signer dicts with email, name, action and optional phone/cpf
        """
        if not name:
            raise ValueError("Document name is required")
        if not file:
            raise ValueError("Document file is required")
        if not signers:
            raise ValueError("At least one signer is required")

        return self._request("POST", "/documents", json={
            "name": name,
            "file": file,
            "signers": signers,
            "sandbox": sandbox,
            "auto_close": auto_close,
            "send_automatic_email": send_automatic_email,
        })

    def get_document_status(self, document_id: str) -> Dict[str, Any]:
        """Current provider view of a document"""
        return self._request("GET", f"/documents/{document_id}")

    def download_document(self, document_id: str) -> bytes:
        """
        Fetch the signed PDF. The provider answers with a download URL
        which is fetched in a second request.
        """
        response = self._send("GET", f"{self.base_url}/documents/{document_id}/download")
        if "application/pdf" in response.headers.get("Content-Type", ""):
            return response.content

        download_url = self._parse(response).get("download_url")
        if not download_url:
            raise ExternalServiceException(
                f"No download URL returned for document {document_id}", response.status_code
            )
        return self._send("GET", download_url, authenticated=False).content

    def cancel_document(self, document_id: str, reason: str = "") -> Dict[str, Any]:
        return self._request("POST", f"/documents/{document_id}/cancel", json={"reason": reason})

    def resend_email(self, document_id: str, signer_email: str) -> Dict[str, Any]:
        return self._request("POST", f"/documents/{document_id}/resend", json={"email": signer_email})

    def test_connection(self) -> bool:
        """Whether the API answers an authenticated request"""
        try:
            self._request("GET", "/account")
            return True
        except ExternalServiceException as e:
            logger.warning("Autentique connection test failed", error=e.message)
            return False

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    def _request(self, method: str, endpoint: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._send(method, f"{self.base_url}{endpoint}", json=json)
        return self._parse(response)

    def _send(
        self,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> requests.Response:
        try:
            response = self.session.request(
                method,
                url,
                json=json,
                headers=self._headers() if authenticated else None,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Autentique request failed", method=method, url=url, error=str(e))
            raise ExternalServiceException(f"Autentique API Error: {e}") from e

        if not 200 <= response.status_code < 300:
            message = self._error_message(response)
            logger.error(
                "Autentique API returned an error",
                method=method,
                url=url,
                status_code=response.status_code,
                error=message,
            )
            raise ExternalServiceException(
                f"Autentique API Error ({response.status_code}): {message}", response.status_code
            )
        return response

    @staticmethod
    def _parse(response: requests.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceException(
                "Autentique API returned invalid JSON", response.status_code
            ) from e

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or "Unknown error"
        if isinstance(data, dict):
            return data.get("message") or data.get("error") or "Unknown error"
        return "Unknown error"
