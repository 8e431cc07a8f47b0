from __future__ import annotations

import json
import logging
import re
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, Response, StreamingResponse
from pydantic import ValidationError
from fastapi.concurrency import run_in_threadpool

from .backend import BackendClient
from .errors import BackendError
from .llm import ChatCompletionsClient, ToolRegistry
from .mocks import mock_recipe
from .orchestrator import ChatLoop, format_sse
from .schemas import (
    ChatRequest,
    EmailForUsernameRequest,
    LoginRequest,
    NoArgs,
    RecipeBoxEntry,
    RecipeIdArgs,
    RecipePayload,
    RecipeRequest,
    RegisterRequest,
    ResendVerificationRequest,
    VerifyEmailRequest,
)
from .session import AuthSession
from .settings import SettingsManager, data_dir
from .templates import render_chat_page, render_verify_email_page
from .tools import (
    ToolContext,
    delete_recipe,
    get_recently_deleted,
    get_saved_recipes,
    recover_recipe,
    register_herbal_tools,
    save_recipe,
)

DATA_DIR = data_dir()
DATA_DIR.mkdir(parents=True, exist_ok=True)
LOG_FILE = DATA_DIR / "server.log"
SETTINGS_PATH = DATA_DIR / "settings.json"

INVALID_MESSAGES = "Invalid request: messages array is required"
CHAT_FAILURE = "An error occurred while processing your request. Please try again."


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger("elara")
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler = RotatingFileHandler(
        LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False
    logger.debug("Logging initialised, writing to %s", LOG_FILE)
    return logger


logger = _configure_logging()

app = FastAPI(title="Elara")

settings_manager = SettingsManager(SETTINGS_PATH)
registry = ToolRegistry()
register_herbal_tools(registry)


def _backend() -> BackendClient:
    backend = settings_manager.settings["backend"]
    return BackendClient(
        base_url=settings_manager.backend_url,
        timeout=backend.get("timeout_seconds", 30),
    )


def _session(request: Request) -> AuthSession:
    return AuthSession.from_header(request.headers.get("authorization"))


def _tool_context(request: Request, edible_mode: bool = False) -> ToolContext:
    return ToolContext(
        backend=_backend(),
        session=_session(request),
        edible_mode=edible_mode,
        mock_fallback=bool(settings_manager.settings["backend"].get("mock_fallback", True)),
    )


def _build_loop(context: ToolContext) -> ChatLoop:
    llm = settings_manager.settings["llm"]
    chat = settings_manager.settings["chat"]
    system_prompt = chat.get("system_prompt") or ""
    if context.edible_mode and chat.get("edible_mode_prompt"):
        system_prompt = f"{system_prompt}\n\n{chat['edible_mode_prompt']}"
    return ChatLoop(
        client=ChatCompletionsClient(
            base_url=llm["base_url"],
            api_key=llm.get("api_key", ""),
            timeout=llm.get("timeout_seconds", 120),
        ),
        registry=registry,
        context=context,
        model=llm["model"],
        system_prompt=system_prompt,
        temperature=llm.get("temperature", 0.2),
        max_steps=int(chat.get("max_steps", 5)),
        stream=bool(llm.get("stream", True)),
    )


async def _json_body(request: Request) -> Any:
    body_bytes = await request.body()
    if not body_bytes:
        return None
    try:
        return json.loads(body_bytes.decode("utf-8"))
    except ValueError:
        return None


def _validation_details(exc: ValidationError) -> Any:
    return json.loads(exc.json(include_url=False))


def _backend_detail(exc: BackendError) -> Optional[str]:
    try:
        data = json.loads(exc.detail)
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("detail"), str):
        return data["detail"]
    return None


def _backend_error_response(exc: BackendError, message: str, **extra: Any) -> JSONResponse:
    # Client errors from the backend pass through; anything else is a bad gateway.
    code = exc.status_code if exc.status_code and exc.status_code < 500 else status.HTTP_502_BAD_GATEWAY
    return JSONResponse({**extra, "error": _backend_detail(exc) or message}, status_code=code)


@app.on_event("startup")
async def on_startup() -> None:
    logger.info(
        "Application startup complete (backend=%s model=%s tools=%s)",
        settings_manager.backend_url,
        settings_manager.settings["llm"]["model"],
        ", ".join(registry.names()),
    )


@app.get("/", response_class=HTMLResponse)
async def chat_page() -> HTMLResponse:
    return HTMLResponse(render_chat_page())


@app.get("/verify-email", response_class=HTMLResponse)
async def verify_email_page() -> HTMLResponse:
    # Landing page for the link in the verification email; the token stays in the query string.
    return HTMLResponse(render_verify_email_page())


@app.post("/api/chat")
async def chat(request: Request) -> Response:
    try:
        body = await _json_body(request)
        if not isinstance(body, dict) or not isinstance(body.get("messages"), list):
            return JSONResponse({"error": INVALID_MESSAGES}, status_code=status.HTTP_400_BAD_REQUEST)
        try:
            chat_request = ChatRequest.model_validate(body)
        except ValidationError as exc:
            logger.info("Rejected chat request: %s", exc.errors(include_url=False))
            return JSONResponse({"error": INVALID_MESSAGES}, status_code=status.HTTP_400_BAD_REQUEST)

        context = _tool_context(request, edible_mode=chat_request.edibleMode)
        loop = _build_loop(context)
        logger.info(
            "Chat turn started (messages=%d edible=%s authenticated=%s)",
            len(chat_request.messages),
            chat_request.edibleMode,
            context.session.is_authenticated,
        )

        def event_stream():
            for event in loop.run(chat_request.messages):
                yield format_sse(event)

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )
    except Exception:
        logger.exception("Error in chat route")
        return JSONResponse({"error": CHAT_FAILURE}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.post("/api/recipe")
async def recipe(request: Request) -> JSONResponse:
    try:
        body = await _json_body(request)
        try:
            recipe_request = RecipeRequest.model_validate(body)
        except ValidationError as exc:
            return JSONResponse(
                {"error": "Invalid request body", "details": _validation_details(exc)},
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        context = _tool_context(request)
        try:
            data = await run_in_threadpool(
                context.backend.get_recipe,
                recipe_request.plantName,
                recipe_request.scientificName,
                recipe_request.edibleUses,
                context.session,
            )
        except BackendError as exc:
            if not context.mock_fallback:
                logger.error("Backend recipe call failed: %s", exc)
                return JSONResponse(
                    {"error": "Failed to fetch recipe from backend"},
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                )
            logger.warning("Backend recipe call failed, serving mock recipe: %s", exc)
            fallback = mock_recipe(recipe_request.plantName, recipe_request.scientificName)
            return JSONResponse({"output": fallback.model_dump()})
        return JSONResponse(data)
    except Exception:
        logger.exception("Error in recipe route")
        return JSONResponse(
            {"error": "Failed to fetch recipe"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


# Recipe box


def _tool_status(result: Dict[str, Any]) -> int:
    return status.HTTP_200_OK if result.get("success", "error" not in result) else status.HTTP_502_BAD_GATEWAY


@app.get("/api/recipes")
async def list_recipes(request: Request) -> JSONResponse:
    result = await run_in_threadpool(get_saved_recipes, NoArgs(), _tool_context(request))
    return JSONResponse(result, status_code=_tool_status(result))


@app.post("/api/recipes")
async def create_recipe(request: Request) -> JSONResponse:
    try:
        payload = RecipePayload.model_validate(await _json_body(request))
    except ValidationError as exc:
        return JSONResponse(
            {"error": "Invalid request body", "details": _validation_details(exc)},
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    result = await run_in_threadpool(save_recipe, payload, _tool_context(request))
    return JSONResponse(result, status_code=_tool_status(result))


@app.get("/api/recipes/deleted")
async def list_deleted_recipes(request: Request) -> JSONResponse:
    result = await run_in_threadpool(get_recently_deleted, NoArgs(), _tool_context(request))
    return JSONResponse(result, status_code=_tool_status(result))


@app.delete("/api/recipes/{recipe_id}")
async def remove_recipe(recipe_id: str, request: Request) -> JSONResponse:
    result = await run_in_threadpool(
        delete_recipe, RecipeIdArgs(recipeId=recipe_id), _tool_context(request)
    )
    return JSONResponse(result, status_code=_tool_status(result))


@app.post("/api/recipes/{recipe_id}/recover")
async def restore_recipe(recipe_id: str, request: Request) -> JSONResponse:
    result = await run_in_threadpool(
        recover_recipe, RecipeIdArgs(recipeId=recipe_id), _tool_context(request)
    )
    return JSONResponse(result, status_code=_tool_status(result))


@app.post("/api/recipes/pdf")
async def recipe_pdf(request: Request) -> Response:
    try:
        entry = RecipeBoxEntry.model_validate(await _json_body(request))
    except ValidationError as exc:
        return JSONResponse(
            {"error": "Invalid request body", "details": _validation_details(exc)},
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    context = _tool_context(request)
    try:
        response = await run_in_threadpool(
            context.backend.download_recipe_pdf, entry.model_dump(), context.session
        )
    except BackendError as exc:
        logger.warning("PDF download for %r failed: %s", entry.recipe.recipeName, exc)
        return _backend_error_response(exc, "Failed to download recipe PDF")
    filename = re.sub(r"[^A-Za-z0-9._ -]+", "", entry.recipe.recipeName).strip() or "recipe"
    return Response(
        content=response.content,
        media_type=response.headers.get("content-type", "application/pdf"),
        headers={"Content-Disposition": f'attachment; filename="{filename}.pdf"'},
    )


# Accounts


@app.post("/api/auth/login")
async def login(request: Request) -> JSONResponse:
    try:
        credentials = LoginRequest.model_validate(await _json_body(request))
    except ValidationError:
        return JSONResponse(
            {"error": "Please enter both username and password"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    try:
        data = await run_in_threadpool(_backend().login, credentials.username, credentials.password)
    except BackendError as exc:
        logger.info("Login failed for %s: %s", credentials.username, exc)
        return _backend_error_response(exc, "Invalid username or password")
    token = data.get("access_token")
    if not token:
        logger.error("Login for %s returned no access token.", credentials.username)
        return JSONResponse(
            {"error": "Login failed"}, status_code=status.HTTP_502_BAD_GATEWAY
        )
    logger.info("User %s logged in.", credentials.username)
    return JSONResponse({"access_token": token, "username": credentials.username})


@app.post("/api/auth/register")
async def register(request: Request) -> JSONResponse:
    try:
        form = RegisterRequest.model_validate(await _json_body(request))
    except ValidationError as exc:
        errors = exc.errors(include_url=False)
        message = errors[0]["msg"].removeprefix("Value error, ") if errors else "Please fill in all fields"
        return JSONResponse({"error": message}, status_code=status.HTTP_400_BAD_REQUEST)
    try:
        data = await run_in_threadpool(_backend().register, form.email, form.username, form.password)
    except BackendError as exc:
        logger.info("Registration failed for %s: %s", form.username, exc)
        return _backend_error_response(exc, "Registration failed")
    logger.info("Registered %s; verification email requested.", form.username)
    return JSONResponse({"success": True, **data})


@app.post("/api/auth/verify-email")
async def verify_email(request: Request) -> JSONResponse:
    try:
        body = VerifyEmailRequest.model_validate(await _json_body(request))
    except ValidationError:
        return JSONResponse(
            {"status": "error", "error": "Invalid verification link"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    try:
        await run_in_threadpool(_backend().verify_email, body.token)
    except BackendError as exc:
        if exc.status_code == status.HTTP_410_GONE:
            return JSONResponse(
                {
                    "status": "expired",
                    "error": "This verification link has expired. Please request a new one.",
                },
                status_code=status.HTTP_410_GONE,
            )
        return _backend_error_response(exc, "Email verification failed", status="error")
    return JSONResponse(
        {"status": "success", "message": "Your email has been verified successfully!"}
    )


@app.post("/api/auth/resend-verification")
async def resend_verification(request: Request) -> JSONResponse:
    try:
        body = ResendVerificationRequest.model_validate(await _json_body(request))
    except ValidationError:
        return JSONResponse(
            {"error": "Email address not found. Please try registering again."},
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    try:
        data = await run_in_threadpool(_backend().resend_verification, body.email)
    except BackendError as exc:
        return _backend_error_response(exc, "Failed to resend verification email")
    return JSONResponse({"success": True, **data})


@app.post("/api/auth/email-for-username")
async def email_for_username(request: Request) -> JSONResponse:
    try:
        body = EmailForUsernameRequest.model_validate(await _json_body(request))
    except ValidationError:
        return JSONResponse(
            {"error": "Username is required"}, status_code=status.HTTP_400_BAD_REQUEST
        )
    try:
        data = await run_in_threadpool(_backend().email_for_username, body.username)
    except BackendError as exc:
        return _backend_error_response(exc, "Could not look up that username")
    return JSONResponse(data)


@app.get("/health/backend", response_class=JSONResponse)
async def backend_health() -> JSONResponse:
    ok = await run_in_threadpool(_backend().healthy)
    state = "ok" if ok else "warn"
    label = "Backend Connected" if ok else "Backend Offline"
    return JSONResponse({"status": state, "label": label})


# Convenience include for uvicorn.
__all__ = ["app"]
