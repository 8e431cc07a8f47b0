from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from .errors import BackendError
from .session import ANONYMOUS, AuthSession

logger = logging.getLogger("elara.backend")


class BackendClient:
    """
    Minimal HTTP client for the herbal recommendation backend.

    Every call takes the caller's `AuthSession` explicitly; the bearer token is
    forwarded as-is when present. There are no retries.
    """

    def __init__(self, base_url: str, timeout: float = 30) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        *,
        session: AuthSession = ANONYMOUS,
        payload: Optional[Dict[str, Any]] = None,
        form: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        headers: Dict[str, str] = dict(session.authorization_header())
        body: Any = None
        if form is not None:
            body = form
        elif payload is not None:
            headers["Content-Type"] = "application/json"
            body = json.dumps(payload)

        url = self._url(path)
        logger.debug("%s %s (authenticated=%s)", method, url, session.is_authenticated)
        try:
            response = requests.request(
                method,
                url,
                headers=headers,
                data=body,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise BackendError(f"Backend unreachable at {url}: {exc}") from exc
        if response.status_code >= 400:
            raise BackendError(
                f"Backend returned {response.status_code} for {method} {path}",
                status_code=response.status_code,
                detail=response.text,
            )
        return response

    def request_json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        response = self.request(method, path, **kwargs)
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise BackendError(
                f"Backend response for {method} {path} is not JSON.",
                status_code=response.status_code,
                detail=response.text,
            ) from exc
        if not isinstance(data, dict):
            raise BackendError(
                f"Backend response for {method} {path} is not a JSON object.",
                status_code=response.status_code,
            )
        return data

    # Recommendations and recipes

    def get_recommendations(
        self,
        medical_concern: str,
        session: AuthSession = ANONYMOUS,
        *,
        edible_mode: bool = False,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"medicalConcern": medical_concern}
        if edible_mode:
            payload["edibleMode"] = True
        return self.request_json(
            "POST", "/getRecommendations", session=session, payload=payload
        )

    def get_recipe(
        self,
        plant_name: str,
        scientific_name: str,
        edible_uses: Optional[str] = None,
        session: AuthSession = ANONYMOUS,
    ) -> Dict[str, Any]:
        payload = {
            "plantName": plant_name,
            "scientificName": scientific_name,
            "edibleUses": edible_uses or "",
        }
        return self.request_json("POST", "/getRecipe", session=session, payload=payload)

    def save_recipe(self, recipe: Dict[str, Any], session: AuthSession) -> Dict[str, Any]:
        return self.request_json("POST", "/saveRecipe", session=session, payload=recipe)

    def get_saved_recipes(self, session: AuthSession) -> Dict[str, Any]:
        return self.request_json("GET", "/getSavedRecipes", session=session)

    def delete_recipe(self, recipe_id: str, session: AuthSession) -> Dict[str, Any]:
        return self.request_json(
            "DELETE", f"/deleteRecipe/{quote(str(recipe_id), safe='')}", session=session
        )

    def recover_recipe(self, recipe_id: str, session: AuthSession) -> Dict[str, Any]:
        return self.request_json(
            "POST", f"/recoverRecipe/{quote(str(recipe_id), safe='')}", session=session
        )

    def recently_deleted(self, session: AuthSession) -> Dict[str, Any]:
        return self.request_json("GET", "/recentlyDeleted", session=session)

    def download_recipe_pdf(
        self, recipe: Dict[str, Any], session: AuthSession
    ) -> requests.Response:
        """Return the raw response so the caller can relay the PDF bytes."""
        return self.request("POST", "/downloadRecipePDF", session=session, payload=recipe)

    # Accounts

    def login(self, username: str, password: str) -> Dict[str, Any]:
        return self.request_json(
            "POST", "/login", form={"username": username, "password": password}
        )

    def register(self, email: str, username: str, password: str) -> Dict[str, Any]:
        return self.request_json(
            "POST",
            "/register",
            payload={"email": email, "username": username, "password": password},
        )

    def verify_email(self, token: str) -> Dict[str, Any]:
        return self.request_json("POST", "/verify-email", payload={"token": token})

    def resend_verification(self, email: str) -> Dict[str, Any]:
        return self.request_json(
            "POST", "/resend-verification", payload={"email": email}
        )

    def email_for_username(self, username: str) -> Dict[str, Any]:
        return self.request_json(
            "POST", "/get-email-for-username", payload={"username": username}
        )

    def healthy(self) -> bool:
        try:
            response = requests.get(self.base_url, timeout=3)
        except requests.RequestException:
            return False
        return response.status_code < 500
