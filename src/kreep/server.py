"""HTTP listener for kreep.

Endpoints
---------
  POST /{credential_id}     hex capsule for the credential (text/plain)
  GET  /static/kreep.js     browser client script, if one is configured

Errors never carry key material: 400 for a malformed id, 404 for an unknown
one, 500 when the record cannot be read or sealed.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response

from . import __version__
from .crypto import CryptoError
from .models import Credential
from .store import Store, StoreError

logger = logging.getLogger(__name__)


def create_app(store: Store[Credential], script_path: Optional[Path] = None) -> FastAPI:
    """Build the FastAPI application serving capsules out of *store*."""
    app = FastAPI(title="kreep", version=__version__, docs_url=None, redoc_url=None)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/{credential_id}", response_class=PlainTextResponse)
    def fetch_credential(credential_id: str) -> str:
        try:
            cid = uuid.UUID(credential_id)
        except ValueError:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, "cannot parse uuid")

        try:
            credential = store.get(cid.bytes)
        except StoreError as exc:
            logger.error("Cannot read credential %s: %s", cid, exc)
            raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "cannot encapsulate credential")
        if credential is None:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "cannot find credential")

        try:
            capsule = credential.capsule()
        except CryptoError as exc:
            logger.error("Cannot seal credential %s: %s", cid, exc)
            raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "cannot encapsulate credential")

        logger.info("Served capsule for credential %s", cid)
        return capsule.to_hex()

    @app.get("/static/kreep.js")
    def get_kreep_script() -> Response:
        if script_path is None or not script_path.is_file():
            raise HTTPException(status.HTTP_404_NOT_FOUND, "script not configured")
        return Response(content=script_path.read_bytes(), media_type="text/javascript")

    @app.exception_handler(HTTPException)
    async def _plain_text_errors(request, exc: HTTPException) -> PlainTextResponse:
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    return app
