from __future__ import annotations

from fastapi import FastAPI, Response

app = FastAPI(title="TON pay verifier")


def plainText(body: str, *, statusCode: int = 200) -> Response:
    return Response(
        content=body,
        status_code=statusCode,
        media_type="text/plain; charset=utf-8",
    )


@app.get("/healthz")
async def healthz() -> Response:
    return plainText("OK")


# pinged by an external cron so free-tier hosts do not idle the process
@app.get("/keepalive")
async def keepalive() -> Response:
    return plainText("awake")
