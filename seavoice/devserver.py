"""
Development Bridge Server

Local stand-in for the voice backend, for exercising the client end to end
without the production service:

- GET  /health      liveness probe
- POST /session     issues single-use stream tokens with an expiry
- WS   /ws?token=   speaks the backend vocabulary and answers each user turn
                    with a scripted maritime-safety reply

User turns end on an explicit `commit` or after a run of quiet audio frames
following speech. Replies are streamed as transcript deltas plus PCM tone.

Run with:
    seavoice serve-dev --port 8000
"""

import asyncio
import base64
import json
import time
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from seavoice.logger import get_logger
from seavoice.realtime.audio_io import compute_level
from seavoice.realtime.session import SessionCreateRequest, SessionCreateResponse
from seavoice.realtime.simulation import SIMULATED_USER_PHRASES, reply_segments, scripted_reply

logger = get_logger(__name__)

# Level above which a captured frame counts as speech
SPEECH_LEVEL = 0.02

# Quiet frames after speech that end a user turn
SILENCE_FRAMES = 5

# Close code for rejected stream tokens
POLICY_VIOLATION = 1008


@dataclass
class IssuedToken:
    conversation_id: str
    expires_at: float


class TokenStore:
    """
    In-memory registry of issued stream tokens.

    Tokens are single-use: a redeemed token is removed, so a client that
    reconnects to the bridge with the same stream URL is rejected and has to
    renegotiate (retry) for a fresh token.
    """

    def __init__(self, ttl_s: int = 600):
        self.ttl_s = ttl_s
        self._tokens: Dict[str, IssuedToken] = {}

    def issue(self, conversation_id: Optional[str] = None) -> SessionCreateResponse:
        self.purge_expired()
        token = uuid.uuid4().hex
        conversation_id = conversation_id or f"conv_{uuid.uuid4().hex[:12]}"
        self._tokens[token] = IssuedToken(conversation_id, time.time() + self.ttl_s)
        return SessionCreateResponse(
            token=token,
            conversation_id=conversation_id,
            expires_in=self.ttl_s,
            websocket_url=f"/ws?token={token}",
        )

    def redeem(self, token: str) -> Optional[IssuedToken]:
        """Consume a token; None if unknown, used or expired."""
        issued = self._tokens.pop(token, None)
        if issued is None or time.time() >= issued.expires_at:
            return None
        return issued

    def purge_expired(self) -> int:
        """Drop tokens that were never redeemed before expiring."""
        now = time.time()
        expired = [token for token, issued in self._tokens.items() if now >= issued.expires_at]
        for token in expired:
            del self._tokens[token]
        return len(expired)

    def __len__(self) -> int:
        return len(self._tokens)


class BridgeSession:
    """One websocket conversation in the backend vocabulary."""

    def __init__(self, websocket: WebSocket, conversation_id: str, step_delay_s: float):
        self.websocket = websocket
        self.conversation_id = conversation_id
        self.step_delay_s = step_delay_s

        self._reply_task: Optional[asyncio.Task] = None
        self._speaking = False
        self._quiet_frames = 0
        self._turns = 0

    async def send(self, payload: dict) -> None:
        await self.websocket.send_text(json.dumps(payload))

    async def run(self) -> None:
        await self.send({"type": "ready", "conversation_id": self.conversation_id})
        try:
            while True:
                raw = await self.websocket.receive_text()
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    await self.send({"type": "error", "code": "invalid_json", "message": "Malformed message"})
                    continue

                msg_type = data.get("type")
                if msg_type == "audio":
                    await self._on_audio(data.get("data") or "")
                elif msg_type == "commit":
                    await self._end_turn()
                elif msg_type == "cancel":
                    await self._cancel_reply()
                elif msg_type == "close":
                    await self.websocket.close()
                    break
                else:
                    logger.debug(f"Ignoring client message: {msg_type!r}")
        except WebSocketDisconnect:
            logger.debug(f"Client left conversation {self.conversation_id}")
        finally:
            if self._reply_task is not None:
                self._reply_task.cancel()

    async def _on_audio(self, encoded: str) -> None:
        try:
            pcm = base64.b64decode(encoded)
        except ValueError:
            return
        if compute_level(pcm) >= SPEECH_LEVEL:
            self._quiet_frames = 0
            if not self._speaking:
                self._speaking = True
                await self.send({"type": "status", "status": "user_speaking"})
        elif self._speaking:
            self._quiet_frames += 1
            if self._quiet_frames >= SILENCE_FRAMES:
                await self._end_turn()

    async def _end_turn(self) -> None:
        self._speaking = False
        self._quiet_frames = 0
        if self._reply_task is not None and not self._reply_task.done():
            return

        phrase = SIMULATED_USER_PHRASES[self._turns % len(SIMULATED_USER_PHRASES)]
        self._turns += 1
        await self.send({"type": "status", "status": "processing"})
        await self.send({"type": "transcript", "role": "user", "text": phrase})
        self._reply_task = asyncio.create_task(self._reply(scripted_reply(phrase)))

    async def _reply(self, reply: str) -> None:
        await self.send({"type": "status", "status": "speaking"})
        for word, audio in reply_segments(reply):
            await asyncio.sleep(self.step_delay_s)
            await self.send({"type": "transcript_delta", "role": "assistant", "delta": word})
            await self.send({"type": "audio", "data": base64.b64encode(audio).decode("ascii")})
        await self.send({"type": "audio_done"})
        await self.send({"type": "transcript", "role": "assistant", "text": reply})
        await self.send({"type": "status", "status": "listening"})

    async def _cancel_reply(self) -> None:
        task, self._reply_task = self._reply_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        await self.send({"type": "status", "status": "listening"})


def create_app(step_delay_s: float = 0.05, token_ttl_s: int = 600) -> FastAPI:
    """Create the development bridge application."""
    app = FastAPI(
        title="SeaVoice Development Bridge",
        description="Local voice backend for client development",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    tokens = TokenStore(ttl_s=token_ttl_s)
    app.state.tokens = tokens

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.post("/session", response_model=SessionCreateResponse)
    async def create_session(request: SessionCreateRequest):
        """Issue a single-use stream token."""
        if request.auth_token is not None and not request.auth_token.strip():
            raise HTTPException(status_code=401, detail="Empty auth token")
        session = tokens.issue(request.conversation_id)
        logger.info(
            f"Session issued: {session.conversation_id} "
            f"(location={request.user_location or 'unknown'})"
        )
        return session

    @app.websocket("/ws")
    async def stream(websocket: WebSocket, token: str = ""):
        issued = tokens.redeem(token)
        if issued is None:
            logger.warning("Rejected stream token")
            await websocket.close(code=POLICY_VIOLATION)
            return
        await websocket.accept()
        await BridgeSession(websocket, issued.conversation_id, step_delay_s).run()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("seavoice.devserver:app", host="127.0.0.1", port=8000)
