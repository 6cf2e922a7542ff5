"""Command-line entry point for signing in against a running RP server."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from . import (
    ApiClient,
    AuthRepository,
    AutoSignInOrchestrator,
    BrowserBridge,
    BrowserCredentialProvider,
    BrowserSignInOrchestrator,
    ClientSettings,
    LocalCredentialProvider,
    Phase,
    SignInState,
    SoftwareAuthenticator,
)
from .errors import PasskeyClientError
from .presence import AutoApprove, ConsolePrompt


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Passkey sign-in client")
    parser.add_argument("--url", help="RP server base URL (overrides PASSKEYS_CLIENT_BASE_URL)")
    parser.add_argument("--username", default="", help="Username for manual sign-in or registration")
    parser.add_argument("--register", action="store_true", help="Register a passkey before signing in")
    parser.add_argument("--browser", action="store_true", help="Drive the ceremony through a Chromium page")
    parser.add_argument("--prompt", action="store_true", help="Ask on the console before using a passkey")
    parser.add_argument("--list-users", action="store_true", help="Print the users registered on the RP and exit")
    return parser.parse_args()


def _print_state(state: SignInState) -> None:
    line = f"[{state.phase.value}]"
    if state.username:
        line += f" {state.username}"
    if state.error:
        line += f" error: {state.error}"
    if state.notice:
        line += f" ({state.notice})"
    print(line)


async def _list_users(api: ApiClient) -> None:
    for user in await api.list_users():
        print(f"{user['username']}: {user['passkeysCount']} passkey(s)")
        for passkey in user.get("passkeys", []):
            flag = " [clone suspected]" if passkey.get("cloneSuspected") else ""
            print(f"  {passkey['id']} {passkey.get('deviceType') or 'unknown'}{flag}")


async def _local(args: argparse.Namespace, settings: ClientSettings) -> SignInState:
    presence = ConsolePrompt() if args.prompt else AutoApprove()
    authenticator = SoftwareAuthenticator(settings, presence=presence)
    provider = LocalCredentialProvider(authenticator, settings.origin)
    repository = AuthRepository(ApiClient(settings))
    if args.register:
        registration = await repository.register(args.username.strip(), provider)
        print(f"Registered {registration.credential_id[:30]}...")
    orchestrator = AutoSignInOrchestrator(repository, provider)
    orchestrator.subscribe(_print_state)
    state = await orchestrator.start()
    if state.phase is Phase.MANUAL_ENTRY or state.phase is Phase.ERROR:
        orchestrator.on_username_edited()
        state = await orchestrator.sign_in(args.username)
    return state


async def _browser(args: argparse.Namespace, settings: ClientSettings) -> SignInState:
    presence = ConsolePrompt() if args.prompt else AutoApprove()
    authenticator = SoftwareAuthenticator(settings, presence=presence)
    async with BrowserBridge(authenticator, settings.base_url, headless=not args.prompt) as bridge:
        provider = BrowserCredentialProvider(bridge)
        orchestrator = BrowserSignInOrchestrator(AuthRepository(ApiClient(settings)), provider)
        orchestrator.subscribe(_print_state)
        if args.register:
            await orchestrator.register(args.username)
        await orchestrator.start()
        if orchestrator.conditional is not None:
            await orchestrator.conditional
        if orchestrator.state.phase is not Phase.SUCCESS:
            await orchestrator.sign_in(args.username)
        await orchestrator.close()
        return orchestrator.state


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)
    settings = ClientSettings()
    if args.url:
        settings = settings.model_copy(update={"base_url": args.url, "origin": args.url.rstrip("/")})
    if args.list_users:
        try:
            asyncio.run(_list_users(ApiClient(settings)))
        except PasskeyClientError as exc:
            print(f"error: {exc}", file=sys.stderr)
            sys.exit(1)
        return
    runner = _browser if args.browser else _local
    try:
        state = asyncio.run(runner(args, settings))
    except PasskeyClientError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)
    sys.exit(0 if state.phase is Phase.SUCCESS else 1)


if __name__ == "__main__":
    main()
