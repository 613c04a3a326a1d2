import contextlib
import functools
import json
import logging
from typing import Any, Awaitable, Callable

from databases import Database
from rich.logging import RichHandler
from starlette.applications import Starlette
from starlette.datastructures import UploadFile
from starlette.middleware import Middleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Mount, Route

from app import config
from domain import services
from domain.errors import MalformedBody, MediaError, PayloadTooLarge
from domain.firewall import AuthConfig, CreationMode, OwnershipMode, owned_by_session
from domain.intents import IntentLog
from domain.media import MediaService, MediaStore
from domain.models import Access, RawFile, Session
from domain.repository import RecipesRepository, UsersRepository, create_tables
from domain.uploads import MULTIPART, admit, admit_request


logger = logging.getLogger(__name__)


type Endpoint = Callable[[Request], Awaitable[Response]]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def aJSONResponse(route: Callable[..., Awaitable[Any | tuple[Any, int]]]):
    @functools.wraps(route)
    async def wrapper(*args: Any, **kwargs: Any) -> JSONResponse:
        resp = await route(*args, **kwargs)
        if not isinstance(resp, tuple):
            message, code = resp, 200
        else:
            message, code = resp
        return JSONResponse({"message": message}, status_code=code)

    return wrapper


def session_of(request: Request) -> Session:
    return Session.from_mapping(request.session)


def guarded(firewall: str) -> Callable[[Endpoint], Endpoint]:
    """Evaluate the named firewall before the endpoint body runs."""

    def decorator(route: Endpoint) -> Endpoint:
        @functools.wraps(route)
        async def wrapper(request: Request) -> Response:
            auth: AuthConfig = request.app.state.firewalls[firewall]
            access = Access(
                session=session_of(request),
                entity_id=request.path_params.get("id"),
            )
            verdict = await auth.evaluate(access)
            verdict.enforce()
            return await route(request)

        return wrapper

    return decorator


async def body_of(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedBody("Body must be JSON.") from e


async def uploads_of(request: Request) -> list[RawFile]:
    """Read the uploaded files and put them through the gate."""
    cfg: config.Config = request.app.state.config
    content_type = request.headers.get("content-type")
    # Nothing is parsed until the envelope is known to be multipart.
    admit(content_type, MULTIPART)
    files: list[RawFile] = []
    async with request.form() as form:
        for _, value in form.multi_items():
            if isinstance(value, UploadFile):
                if value.size is not None and value.size > cfg.max_upload_bytes:
                    raise PayloadTooLarge(f"Files may be at most {cfg.max_upload_bytes} bytes.")
                files.append(
                    RawFile(
                        filename=value.filename,
                        content_type=value.content_type or "",
                        data=await value.read(),
                    )
                )
    return admit_request(
        content_type,
        files,
        allowed=cfg.allowed_media,
        max_bytes=cfg.max_upload_bytes,
    )


async def media_error(request: Request, exc: Exception) -> Response:
    assert isinstance(exc, MediaError)
    if exc.status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status)


# Recipes


@aJSONResponse
async def list_recipes(request: Request) -> list[dict[str, Any]]:
    recipes = await request.app.state.recipes.list()
    return [r.to_dict() for r in recipes]


@aJSONResponse
async def get_recipe(request: Request) -> dict[str, Any]:
    recipe = await request.app.state.recipes.get(request.path_params["id"])
    return recipe.to_dict()


@guarded("recipe_creation")
@aJSONResponse
async def post_recipe(request: Request) -> tuple[dict[str, Any], int]:
    recipe = await services.create_recipe(
        await body_of(request),
        session=session_of(request),
        repository=request.app.state.recipes,
    )
    return recipe.to_dict(), 201


@guarded("recipe_owner")
@aJSONResponse
async def put_recipe(request: Request) -> dict[str, Any]:
    recipe = await services.change_recipe(
        request.path_params["id"],
        await body_of(request),
        repository=request.app.state.recipes,
    )
    return recipe.to_dict()


@guarded("recipe_owner")
@aJSONResponse
async def delete_recipe(request: Request) -> str:
    await services.discard_recipe(
        request.path_params["id"],
        repository=request.app.state.recipes,
        media=request.app.state.recipe_media,
    )
    return "Recipe deleted."


# Users


@aJSONResponse
async def list_users(request: Request) -> list[dict[str, Any]]:
    users = await request.app.state.users.list()
    return [u.to_dict() for u in users]


@aJSONResponse
async def get_user(request: Request) -> dict[str, Any]:
    user = await request.app.state.users.get(request.path_params["id"])
    return user.to_dict()


@aJSONResponse
async def post_user(request: Request) -> tuple[dict[str, Any], int]:
    user = await services.create_user(
        await body_of(request), repository=request.app.state.users
    )
    return user.to_dict(), 201


@aJSONResponse
async def sign_in(request: Request) -> str:
    session = await services.sign_in(
        await body_of(request), repository=request.app.state.users
    )
    request.session.update({"isAuth": session.is_auth, "username": session.username})
    return f"Signed in as {session.username}."


@aJSONResponse
async def sign_out(request: Request) -> str:
    request.session.clear()
    return "Signed out."


@guarded("user_owner")
@aJSONResponse
async def put_user(request: Request) -> dict[str, Any]:
    user = await services.change_user(
        request.path_params["id"],
        await body_of(request),
        repository=request.app.state.users,
    )
    request.session["username"] = user.username
    return user.to_dict()


@guarded("user_owner")
@aJSONResponse
async def delete_user(request: Request) -> str:
    await services.discard_user(
        request.path_params["id"],
        repository=request.app.state.users,
        media=request.app.state.user_media,
    )
    request.session.clear()
    return "User deleted."


# Media


def media_routes(media_attr: str, firewall: str) -> list[Route]:
    """Media routes nested under an entity, backed by `app.state.<media_attr>`."""

    async def get_media(request: Request) -> Response:
        media: MediaService = getattr(request.app.state, media_attr)
        data, media_type = await media.fetch(
            request.path_params["id"], request.path_params["filename"]
        )
        mime = media_type.mime if media_type else "application/octet-stream"
        return Response(data, media_type=mime)

    @guarded(firewall)
    @aJSONResponse
    async def post_media(request: Request) -> tuple[list[str], int]:
        media: MediaService = getattr(request.app.state, media_attr)
        files = await uploads_of(request)
        return await media.attach(request.path_params["id"], files), 201

    @guarded(firewall)
    @aJSONResponse
    async def put_media(request: Request) -> list[str]:
        media: MediaService = getattr(request.app.state, media_attr)
        files = await uploads_of(request)
        return await media.replace(request.path_params["id"], files)

    @guarded(firewall)
    @aJSONResponse
    async def delete_media(request: Request) -> str:
        media: MediaService = getattr(request.app.state, media_attr)
        await media.remove(request.path_params["id"])
        return "Media removed."

    return [
        Route("/{id}/media/{filename}", get_media, methods=["GET"]),
        Route("/{id}/media", post_media, methods=["POST"]),
        Route("/{id}/media", put_media, methods=["PUT"]),
        Route("/{id}/media", delete_media, methods=["DELETE"]),
    ]


def create_app(cfg: config.Config | None = None) -> Starlette:
    cfg = config.Config() if cfg is None else cfg
    db = Database(cfg.db_url)
    recipes = RecipesRepository(db)
    users = UsersRepository(db)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        configure_logging(cfg.log_level)
        for path in (cfg.media_dir, cfg.staging_dir, cfg.intents_dir):
            path.mkdir(parents=True, exist_ok=True)
        await db.connect()
        await create_tables(db)
        for media in (app.state.recipe_media, app.state.user_media):
            n = await media.reconcile_pending()
            if n:
                logger.warning("Reconciled %d unfinished media operation(s).", n)
        logger.info("Serving media from %s", cfg.media_dir)
        yield
        await db.disconnect()

    recipe_routes = [
        Route("/", list_recipes, methods=["GET"]),
        Route("/", post_recipe, methods=["POST"]),
        Route("/{id}", get_recipe, methods=["GET"]),
        Route("/{id}", put_recipe, methods=["PUT"]),
        Route("/{id}", delete_recipe, methods=["DELETE"]),
        *media_routes("recipe_media", "recipe_owner"),
    ]
    user_routes = [
        Route("/", list_users, methods=["GET"]),
        Route("/", post_user, methods=["POST"]),
        Route("/sign-in", sign_in, methods=["POST"]),
        Route("/sign-out", sign_out, methods=["POST"]),
        Route("/{id}", get_user, methods=["GET"]),
        Route("/{id}", put_user, methods=["PUT"]),
        Route("/{id}", delete_user, methods=["DELETE"]),
        *media_routes("user_media", "user_owner"),
    ]

    app = Starlette(
        debug=True if cfg.env == config.Env.local else False,
        routes=[
            Mount("/api/recipes", routes=recipe_routes),
            Mount("/api/users", routes=user_routes),
        ],
        middleware=[
            Middleware(
                SessionMiddleware,
                secret_key=cfg.secret_key,
                https_only=cfg.env == config.Env.prod,
            )
        ],
        exception_handlers={MediaError: media_error},
        lifespan=lifespan,
    )

    app.state.config = cfg
    app.state.db = db
    app.state.recipes = recipes
    app.state.users = users
    app.state.recipe_media = MediaService(
        entities=recipes,
        store=MediaStore(cfg.media_dir, timeout=cfg.store_timeout),
        staging=cfg.staging_dir / "recipes",
        intents=IntentLog(cfg.intents_dir / "recipes"),
        allowed=cfg.allowed_media,
    )
    app.state.user_media = MediaService(
        entities=users,
        store=MediaStore(cfg.media_dir, timeout=cfg.store_timeout),
        staging=cfg.staging_dir / "users",
        intents=IntentLog(cfg.intents_dir / "users"),
        allowed=cfg.allowed_media,
        max_files=1,
    )
    app.state.firewalls = {
        "recipe_creation": CreationMode(),
        "recipe_owner": OwnershipMode(owned_by_session(recipes.get_owner)),
        "user_owner": OwnershipMode(owned_by_session(users.get_owner)),
    }
    return app


app = create_app()
