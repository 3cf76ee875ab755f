import argparse
import asyncio
import logging
import sys

from .log_config import setup_logging


logger = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Vonix chat command line interface")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the chat relay and Discord bot")
    serve.add_argument(
        "--reconfigure",
        action="store_true",
        help="Force interactive configuration prompts",
    )

    chat = subparsers.add_parser("chat", help="Follow the live chat in this terminal")
    chat.add_argument("--limit", type=int, default=20, help="History messages to show")

    login = subparsers.add_parser("login", help="Store a bearer token for sending")
    login.add_argument("token")
    subparsers.add_parser("logout", help="Forget the stored bearer token")

    issue = subparsers.add_parser(
        "issue-token", help="Sign a development token and register its user"
    )
    issue.add_argument("user_id", type=int)
    issue.add_argument("username")
    issue.add_argument("--role", default="user", choices=["user", "moderator", "admin"])

    args = parser.parse_args(argv)

    setup_logging(debug=args.debug)

    if args.command == "serve":
        from .main import main_async

        asyncio.run(main_async(reconfigure=args.reconfigure))
    elif args.command == "chat":
        asyncio.run(_chat(args.limit))
    elif args.command == "login":
        _login(args.token)
    elif args.command == "logout":
        _logout()
    elif args.command == "issue-token":
        print(asyncio.run(_issue_token(args.user_id, args.username, args.role)))


async def _chat(limit: int) -> None:
    """Print history and pushed messages; send every line typed on stdin."""
    from .client.connection import ChatConnection
    from .client.credentials import TokenStore
    from .client.feed import FeedStatus
    from .client.live_chat import LiveChat, format_message
    from .client.rest import ChatApiClient
    from .config import load_config

    cfg = load_config()
    credentials = TokenStore()
    api = ChatApiClient(cfg.client.api_url, credentials)
    connection = ChatConnection(cfg.client.ws_url)
    logged_out = asyncio.Event()

    def _on_change(message) -> None:
        # Messages pushed while history loads are printed with it.
        if message is not None and view.feed.status is FeedStatus.READY:
            print(format_message(message), flush=True)

    def _navigate(path: str) -> None:
        logger.info("Redirecting to %s", path)
        logged_out.set()

    view = LiveChat(
        connection,
        api,
        credentials,
        on_change=_on_change,
        alert=lambda text: print(f"! {text}", file=sys.stderr, flush=True),
        navigate=_navigate,
        history_limit=limit,
    )
    await view.mount()
    if view.placeholder:
        print(view.placeholder, flush=True)
    for message in view.feed.messages:
        print(format_message(message), flush=True)

    loop = asyncio.get_running_loop()
    try:
        while not logged_out.is_set():
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            if not line.strip():
                continue
            if credentials.token is None:
                print("! Log in first with `vonix login TOKEN`", file=sys.stderr)
                continue
            await view.send(line)
    finally:
        await view.unmount()
        await api.close()


def _login(token: str) -> None:
    from .client.credentials import TokenStore

    store = TokenStore()
    store.save(token)
    logger.info("Token stored at %s", store.path)


def _logout() -> None:
    from .client.credentials import TokenStore

    TokenStore().clear()


async def _issue_token(user_id: int, username: str, role: str) -> str:
    """Sign a token and make sure the user it names exists."""
    from .config import ensure_config
    from .db.models import User
    from .db.session import close_db, get_session, init_db
    from .http.deps import create_access_token

    cfg = ensure_config()
    await init_db(cfg.database.url)
    try:
        async with get_session() as db:
            user = await db.get(User, user_id)
            if user is None:
                db.add(User(id=user_id, username=username, role=role))
                logger.info("Registered user id=%s username=%s", user_id, username)
            else:
                user.role = role
            await db.commit()
    finally:
        await close_db()
    return create_access_token(cfg.auth, user_id, username, role=role)


if __name__ == "__main__":
    main()
