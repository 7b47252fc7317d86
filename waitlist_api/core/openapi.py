"""OpenAPI customization.

Adds the ``X-API-Key`` security scheme and tag descriptions. Unlike a
globally authenticated API, only the admin operations listed in
``ADMIN_OPERATIONS`` are marked as requiring the key; public signup,
referral lookup, stats and health stay open.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

ADMIN_OPERATIONS = {
    ("/v1/waitlist/position", "get"),
    ("/v1/waitlist/entries", "delete"),
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add tags and admin security."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Admin key from APP_API_KEYS.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Waitlist",
                "description": "Signup, referral lookup, stats and admin operations.",
            },
            {
                "name": "Health",
                "description": "Liveness checks.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method, method_obj in methods.items():
                if not isinstance(method_obj, dict):
                    continue
                if (path, method) in ADMIN_OPERATIONS:
                    method_obj["security"] = [{"ApiKeyAuth": []}]
                else:
                    method_obj.setdefault("security", [])

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
