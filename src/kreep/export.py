"""Userscript export.

Renders a Tampermonkey userscript that pulls a capsule from a running kreep
server, decrypts it in the browser with the embedded api key and fills the
login form on the target page.
"""

from __future__ import annotations

import json
from enum import Enum
from string import Template
from typing import Optional

from pydantic import BaseModel, field_validator

from .models import Credential


class ExportFormat(str, Enum):
    tampermonkey = "tampermonkey"


class ScriptContext(BaseModel):
    """Values substituted into the userscript template."""

    script_name: str = "Kreep Auto Fill"
    script_description: str = "Kreep Auto Fill"
    script_version: str = "1.0"
    script_page_url: str

    http_host: str = "localhost"
    http_port: int = 4500

    id: Optional[str] = None
    api_key: Optional[str] = None
    user_input_selector: str = ""
    password_input_selector: str = ""
    submit_button_selector: Optional[str] = None

    @field_validator("script_name", "script_description", "script_version", "script_page_url", "http_host")
    @classmethod
    def _single_line(cls, value: str) -> str:
        # each value lands on its own "// @key" header line
        if any(ch in value for ch in "\r\n\u2028\u2029"):
            raise ValueError("must not contain line breaks")
        return value

    @property
    def server_url(self) -> str:
        return f"http://{self.http_host}:{self.http_port}"

    def for_credential(self, credential: Credential) -> ScriptContext:
        """Return a copy carrying *credential*'s id and hex api key."""
        return self.model_copy(update={"id": str(credential.id), "api_key": credential.api_key_hex})


_TAMPERMONKEY = Template(
    """\
// ==UserScript==
// @name         $script_name
// @namespace    $server_url
// @version      $script_version
// @description  $script_description
// @match        $script_page_url
// @require      $server_url/static/kreep.js
// @grant        none
// ==/UserScript==

(function () {
    'use strict';

    const kreep = new Kreep($id, $api_key, $server_url_literal)
        .userInput(document.querySelector($user_input_selector))
        .passwordInput(document.querySelector($password_input_selector));
$submit_button
    window.addEventListener('load', () => kreep.autoFill());
})();
"""
)


def _js(value: str) -> str:
    return json.dumps(value)


def render_userscript(context: ScriptContext, fmt: ExportFormat = ExportFormat.tampermonkey) -> str:
    """Render the userscript for *context*.

    Raises :class:`ValueError` if the context has no credential attached.
    """
    if context.id is None or context.api_key is None:
        raise ValueError("ScriptContext has no credential; call for_credential() first.")
    if fmt is not ExportFormat.tampermonkey:
        raise ValueError(f"Unsupported export format: {fmt}")

    submit = ""
    if context.submit_button_selector:
        submit = f"    kreep.submitButton(document.querySelector({_js(context.submit_button_selector)}));"

    return _TAMPERMONKEY.substitute(
        script_name=context.script_name,
        script_description=context.script_description,
        script_version=context.script_version,
        script_page_url=context.script_page_url,
        server_url=context.server_url,
        server_url_literal=_js(context.server_url),
        id=_js(context.id),
        api_key=_js(context.api_key),
        user_input_selector=_js(context.user_input_selector),
        password_input_selector=_js(context.password_input_selector),
        submit_button=submit,
    )
