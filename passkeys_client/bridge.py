"""Playwright bridge that routes a page's WebAuthn calls to the software authenticator."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from .authenticator import SoftwareAuthenticator
from .errors import (
    CredentialProviderError,
    CredentialStoreError,
    NoCredentialAvailable,
    PasskeyClientError,
    UserCancelled,
)
from .provider import Mediation

LOGGER = logging.getLogger(__name__)

# DOMException names raised into the page for authenticator failures
DOM_ERROR_NAMES = {
    UserCancelled: "NotAllowedError",
    NoCredentialAvailable: "NotFoundError",
    CredentialStoreError: "InvalidStateError",
}

ERRORS_BY_DOM_NAME = {
    "NotAllowedError": UserCancelled,
    "AbortError": UserCancelled,
    "NotFoundError": NoCredentialAvailable,
}


INJECT_SCRIPT = r"""
(() => {
  const toBase64url = (buffer) => {
    const view = buffer instanceof ArrayBuffer
      ? new Uint8Array(buffer)
      : new Uint8Array(buffer.buffer, buffer.byteOffset, buffer.byteLength);
    let binary = "";
    view.forEach((b) => { binary += String.fromCharCode(b); });
    return btoa(binary).replace(/\+/g, "-").replace(/\//g, "_").replace(/=+$/, "");
  };

  const fromBase64url = (value) => {
    const padding = "=".repeat((4 - (value.length % 4)) % 4);
    const binary = atob((value + padding).replace(/-/g, "+").replace(/_/g, "/"));
    const bytes = new Uint8Array(binary.length);
    for (let i = 0; i < binary.length; i += 1) {
      bytes[i] = binary.charCodeAt(i);
    }
    return bytes.buffer;
  };

  const descriptors = (items = []) =>
    items.map((item) => ({ type: item.type, id: toBase64url(item.id), transports: item.transports }));

  const creationOptions = (options) => ({
    rp: options.rp,
    user: { ...options.user, id: toBase64url(options.user.id) },
    challenge: toBase64url(options.challenge),
    pubKeyCredParams: (options.pubKeyCredParams ?? []).map((p) => ({ type: p.type, alg: p.alg })),
    timeout: options.timeout ?? 60000,
    attestation: options.attestation ?? "none",
    authenticatorSelection: options.authenticatorSelection ?? {},
    excludeCredentials: descriptors(options.excludeCredentials),
  });

  const requestOptions = (options) => ({
    rpId: options.rpId ?? window.location.hostname,
    challenge: toBase64url(options.challenge),
    allowCredentials: descriptors(options.allowCredentials),
    timeout: options.timeout ?? 60000,
    userVerification: options.userVerification ?? "preferred",
  });

  const credential = (payload) => {
    const response = payload.response || {};
    const body = response.attestationObject
      ? {
          clientDataJSON: fromBase64url(response.clientDataJSON),
          attestationObject: fromBase64url(response.attestationObject),
          getTransports: () => response.transports ?? [],
          toJSON: () => response,
        }
      : {
          clientDataJSON: fromBase64url(response.clientDataJSON),
          authenticatorData: fromBase64url(response.authenticatorData),
          signature: fromBase64url(response.signature),
          userHandle: response.userHandle ? fromBase64url(response.userHandle) : null,
          toJSON: () => response,
        };
    return {
      id: payload.id,
      rawId: fromBase64url(payload.rawId ?? payload.id),
      type: payload.type ?? "public-key",
      authenticatorAttachment: payload.authenticatorAttachment ?? "platform",
      getClientExtensionResults: () => payload.clientExtensionResults || {},
      response: body,
      toJSON: () => payload,
    };
  };

  const settle = (result) => {
    if (result && result.error) {
      throw new DOMException(result.error.message, result.error.name);
    }
    return credential(result);
  };

  if (!navigator.credentials || navigator.credentials.__passkeysHooked) {
    return;
  }
  const originalCreate = navigator.credentials.create.bind(navigator.credentials);
  const originalGet = navigator.credentials.get.bind(navigator.credentials);

  navigator.credentials.create = async (options) => {
    if (!options?.publicKey || typeof window.__passkeysMakeCredential !== "function") {
      return originalCreate(options);
    }
    return settle(await window.__passkeysMakeCredential({
      origin: window.location.origin,
      publicKey: creationOptions(options.publicKey),
    }));
  };

  navigator.credentials.get = async (options) => {
    if (!options?.publicKey || typeof window.__passkeysGetAssertion !== "function") {
      return originalGet(options);
    }
    return settle(await window.__passkeysGetAssertion({
      origin: window.location.origin,
      mediation: options.mediation ?? "optional",
      publicKey: requestOptions(options.publicKey),
    }));
  };

  Object.defineProperty(navigator.credentials, "__passkeysHooked", { value: true });
})();
"""

# Runs inside the page: decodes the RP JSON options and calls the WebAuthn API.
CALL_SCRIPT = r"""
async ({ kind, options, mediation }) => {
  const fromBase64url = (value) => {
    const padding = "=".repeat((4 - (value.length % 4)) % 4);
    const binary = atob((value + padding).replace(/-/g, "+").replace(/_/g, "/"));
    return Uint8Array.from(binary, (c) => c.charCodeAt(0)).buffer;
  };
  const publicKey = { ...options, challenge: fromBase64url(options.challenge) };
  const decodeList = (items) => (items ?? []).map((item) => ({ ...item, id: fromBase64url(item.id) }));
  try {
    let result;
    if (kind === "create") {
      publicKey.user = { ...options.user, id: fromBase64url(options.user.id) };
      publicKey.excludeCredentials = decodeList(options.excludeCredentials);
      result = await navigator.credentials.create({ publicKey });
    } else {
      publicKey.allowCredentials = decodeList(options.allowCredentials);
      result = await navigator.credentials.get({ publicKey, mediation });
    }
    return { credential: result.toJSON() };
  } catch (err) {
    return { error: { name: err.name || "Error", message: err.message || String(err) } };
  }
}
"""


def dom_error(exc: PasskeyClientError) -> Dict[str, Dict[str, str]]:
    for error_type, name in DOM_ERROR_NAMES.items():
        if isinstance(exc, error_type):
            return {"error": {"name": name, "message": str(exc)}}
    return {"error": {"name": "UnknownError", "message": str(exc)}}


def provider_error(name: str, message: str) -> CredentialProviderError:
    return ERRORS_BY_DOM_NAME.get(name, CredentialProviderError)(message or name)


class BrowserBridge:
    """Chromium page on the RP origin with ``navigator.credentials`` hooked."""

    def __init__(
        self,
        authenticator: SoftwareAuthenticator,
        target_url: str,
        *,
        headless: bool = False,
    ) -> None:
        self.authenticator = authenticator
        self.target_url = target_url
        self.headless = headless
        self.page: Optional[Page] = None
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def __aenter__(self) -> "BrowserBridge":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def start(self) -> Page:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        context = await self._browser.new_context()
        await self._prepare_context(context)
        self.page = await context.new_page()
        LOGGER.info("Opening %s", self.target_url)
        await self.page.goto(self.target_url)
        return self.page

    async def stop(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self.page = None

    async def _prepare_context(self, context: BrowserContext) -> None:
        await context.expose_binding("__passkeysMakeCredential", self._handle_make)
        await context.expose_binding("__passkeysGetAssertion", self._handle_get)
        await context.add_init_script(INJECT_SCRIPT)

    async def _delegate(self, call: Callable[..., Dict[str, Any]], payload: Dict[str, Any]) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        options = payload.get("publicKey", payload)
        try:
            return await loop.run_in_executor(None, functools.partial(call, options, payload.get("origin")))
        except PasskeyClientError as exc:
            LOGGER.info("Authenticator refused page request: %s", exc)
            return dom_error(exc)

    async def _handle_make(self, _source: Any, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._delegate(self.authenticator.make_credential, payload)

    async def _handle_get(self, _source: Any, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._delegate(self.authenticator.get_assertion, payload)

    async def call(self, kind: str, options: Dict[str, Any], mediation: Optional[str] = None) -> Dict[str, Any]:
        if self.page is None:
            raise CredentialProviderError("Browser bridge is not running")
        result = await self.page.evaluate(CALL_SCRIPT, {"kind": kind, "options": options, "mediation": mediation})
        if "error" in result:
            raise provider_error(result["error"].get("name", ""), result["error"].get("message", ""))
        return result["credential"]


class BrowserCredentialProvider:
    """Credential provider that goes through the page's WebAuthn API."""

    def __init__(self, bridge: BrowserBridge) -> None:
        self.bridge = bridge

    async def get_assertion(self, options: Dict[str, Any], mediation: Mediation = "required") -> Dict[str, Any]:
        # conditional requests need an autocomplete field; the bridge answers them directly
        page_mediation = "optional" if mediation == "conditional" else mediation
        return await self.bridge.call("get", options, page_mediation)

    async def create_credential(self, options: Dict[str, Any]) -> Dict[str, Any]:
        return await self.bridge.call("create", options)
