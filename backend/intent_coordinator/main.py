from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from intent_coordinator.middleware.observability import ObservabilityMiddleware
from intent_coordinator.routers.health import router as health_router
from intent_coordinator.routers.intents import router as intents_router
from intent_coordinator.telemetry.logging import init_logging
from intent_coordinator.telemetry.metrics import router as metrics_router

init_logging()

app = FastAPI(title="Intent Coordinator API")

# request metrics + structured logs
app.add_middleware(ObservabilityMiddleware)


# 422 -> 400
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):  # type: ignore[no-redef]
    # pydantic error objects are not always JSON serializable
    sanitized: list[dict] = []
    for err in exc.errors():
        e = dict(err)
        ctx = e.get("ctx")
        if isinstance(ctx, dict):
            e["ctx"] = {str(k): str(v) for k, v in ctx.items()}
        elif ctx is not None:
            e["ctx"] = str(ctx)
        if "input" in e:
            val = e["input"]
            if not isinstance(val, (str, int, float, bool, type(None), list, dict)):
                e["input"] = str(val)
        sanitized.append(e)
    return JSONResponse(status_code=400, content={"detail": sanitized})


app.include_router(health_router)
app.include_router(metrics_router)  # /metrics
app.include_router(intents_router)
