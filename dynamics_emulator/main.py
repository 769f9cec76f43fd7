"""
Dynamics emulator: Azure AD token endpoint + Dynamics OData /data service in one app.
For local development and tests of dynamics_client. Port 9100 by default.
"""
import os

from fastapi import FastAPI

from dynamics_emulator.data_routes import router as data_router
from dynamics_emulator.token_endpoint import router as token_router

app = FastAPI(title="Dynamics Emulator", version="0.1.0")
app.include_router(token_router, tags=["token"])
app.include_router(data_router, tags=["data"])


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "dynamics_emulator"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dynamics_emulator.main:app",
        host="127.0.0.1",
        port=int(os.environ.get("EMULATOR_PORT", "9100")),
        reload=True,
    )
