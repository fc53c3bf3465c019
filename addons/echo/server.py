import json
import os
from pathlib import Path

from fastapi import FastAPI, Header, HTTPException, Request

app = FastAPI(title="Echo addon")

AUTH_TOKEN = os.environ.get("ADDON_AUTH_TOKEN", "")


def _check_auth(token: str | None) -> None:
    if AUTH_TOKEN and token != AUTH_TOKEN:
        raise HTTPException(status_code=401, detail="invalid addon token")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/manifest.json")
def manifest():
    return json.loads((Path(__file__).parent / "manifest.json").read_text(encoding="utf-8"))


@app.post("/echo", status_code=201)
async def echo(request: Request, x_addon_auth: str | None = Header(default=None)):
    _check_auth(x_addon_auth)
    body = await request.body()
    print(f"echo: {len(body)} bytes", flush=True)
    return {"addon": os.environ.get("ADDON_ID"), "echo": json.loads(body or b"null")}
