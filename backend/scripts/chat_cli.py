"""Terminal chat with Zen through a running relay.

Replies stream in as they are generated. Press Ctrl-C while a reply is
streaming to cancel it; press Ctrl-C or Ctrl-D at the prompt to quit.

Usage:
    cd backend
    uv run uvicorn app.main:app          # in another terminal
    uv run python scripts/chat_cli.py [relay_url]
"""

import asyncio
import signal
import sys

from app.client.session import ChatSession, SessionState
from app.client.transport import HttpChatTransport
from app.core.config import settings


class _Printer:
    """Prints only the new suffix of the draft on each change."""

    def __init__(self):
        self.printed = 0

    def __call__(self, session: ChatSession) -> None:
        if session.draft is not None:
            text = session.draft.text
            if self.printed == 0:
                print("zen> ", end="")
            print(text[self.printed:], end="", flush=True)
            self.printed = len(text)
            return

        if self.printed:
            print()
        self.printed = 0
        if session.state == SessionState.ERROR and session.error:
            print(f"[{session.error.kind}] {session.error.message}")


async def main(url: str) -> None:
    session = ChatSession(HttpChatTransport(url))
    session.subscribe(_Printer())
    loop = asyncio.get_running_loop()

    print(f"Connected to {url}. Ctrl-C cancels a reply.")
    while True:
        try:
            text = await asyncio.to_thread(input, "you> ")
        except (EOFError, KeyboardInterrupt):
            print()
            return

        loop.add_signal_handler(signal.SIGINT, session.cancel)
        try:
            submitted = await session.submit(text)
        finally:
            loop.remove_signal_handler(signal.SIGINT)

        if submitted and session.state == SessionState.IDLE and session.messages[-1].role == "user":
            print("[cancelled]")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else settings.relay_url))
