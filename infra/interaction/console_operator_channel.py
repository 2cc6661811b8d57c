from __future__ import annotations

import asyncio

from domain.models import OperatorToken

_YES = {"y", "yes", "confirm", "submit"}


class ConsoleOperatorChannel:
    """Simple stdin/stdout implementation of OperatorChannelPort.

    Protocol tokens are printed as ``[TOKEN] message`` lines so that a
    wrapping process can pick them out of the output.
    """

    async def send_token(self, token: OperatorToken, message: str) -> None:
        print(f"[{token.value}] {message}", flush=True)

    async def ask_free_text(self, question_id: str, prompt: str) -> str:
        print(f"[{OperatorToken.QUESTION.value}] {question_id}: {prompt}", flush=True)
        text = await asyncio.to_thread(input, "> ")
        return text.strip()

    async def ask_confirmation(self, prompt: str) -> bool:
        print(f"[{OperatorToken.CONFIRM_SUBMIT.value}] {prompt}", flush=True)
        raw = await asyncio.to_thread(input, "> Type 'yes' to submit, anything else to cancel: ")
        return raw.strip().lower() in _YES
