"""
FastAPI example: server-side pay-and-execute with progress over SSE.

Run with:
    pip install cronos-x402-sdk[fastapi] uvicorn
    export RESOURCE_SERVICE_URL=https://your-resource-service
    export CRONOS_DEVELOPER_PRIVATE_KEY=0x...
    uvicorn examples.fastapi_example:app --reload

Test:
    # List services
    curl http://localhost:8000/api/x402/services

    # Execute one and watch the progress events
    curl -N -X POST http://localhost:8000/api/x402/execute \
        -H 'Content-Type: application/json' \
        -d '{"serviceId": "nft-mint-demo"}'
"""

import logging

from fastapi import FastAPI

from cronos_x402_sdk.config import X402Settings
from cronos_x402_sdk.integrations.fastapi_integration import create_x402_router

logging.basicConfig(level=logging.INFO)

settings = X402Settings.from_env()

app = FastAPI(title="x402 Cronos FastAPI Example")
app.include_router(create_x402_router(settings))


@app.get("/")
async def index():
    """Free endpoint."""
    return {
        "message": "Welcome to the x402 Cronos example",
        "network": settings.network,
        "registry": settings.resource_service_url,
    }


if __name__ == "__main__":
    import uvicorn

    print("Starting FastAPI x402 example server...")
    print("Endpoints:")
    print("  GET  http://localhost:8000/api/x402/services")
    print("  GET  http://localhost:8000/api/x402/wallet-status")
    print("  POST http://localhost:8000/api/x402/execute   {\"serviceId\": ...}")
    uvicorn.run(app, host="0.0.0.0", port=8000)
