"""
Datasette plugin exposing the price catalog moderation workflow as JSON routes.

- Clients register, log in and submit observed prices
- Administrators review contributions and manage client standing
- Blacklist inspection, release and sweeping
- Client listing and the audit log
"""

import asyncio
import functools
import json
import logging
from pathlib import Path

from datasette import Response, hookimpl
from datasette.utils.asgi import Request

from price_moderation.config import PLUGIN_NAME, ModerationConfig
from price_moderation.errors import CatalogError, Forbidden, InvalidInput, NotFound
from price_moderation.models import PriceSource
from price_moderation.service import CatalogService

logger = logging.getLogger(__name__)

ROUTE_PREFIX = "/-/price-catalog"

ERROR_STATUS = {
    "invalid_input": 400,
    "not_found": 404,
    "forbidden": 403,
    "already_decided": 409,
    "conflict": 409,
    "unavailable": 503,
}

SERVICE_ATTR = "_price_catalog_service"

_background_tasks: set[asyncio.Task] = set()

# -----------------------------------------------------------------------------
# Plugin Configuration
# -----------------------------------------------------------------------------


def get_plugin_config(datasette) -> ModerationConfig:
    """Get plugin configuration from the datasette plugins section."""
    return ModerationConfig.from_dict(datasette.plugin_config(PLUGIN_NAME) or {})


def ensure_db_exists(db_path: Path) -> None:
    """Create or upgrade the catalog database. Safe to call repeatedly."""
    from datasette_price_catalog.migrations import run_migrations

    run_migrations(db_path, verbose=False)


def get_service(datasette) -> CatalogService:
    """The CatalogService bound to this Datasette instance, created on first use."""
    service = getattr(datasette, SERVICE_ATTR, None)
    if service is None:
        config = get_plugin_config(datasette)
        ensure_db_exists(config.db_path)
        service = CatalogService.from_config(config)
        setattr(datasette, SERVICE_ATTR, service)
    return service


# -----------------------------------------------------------------------------
# Actor Helpers
# -----------------------------------------------------------------------------


def client_actor(client) -> dict:
    return {
        "id": f"client:{client.client_id}",
        "principal_type": "client",
        "principal_id": client.client_id,
        "display": client.name,
    }


def admin_actor(account: dict) -> dict:
    username = account["username"]
    return {
        "id": f"admin:{username}",
        "principal_type": "admin",
        "principal_id": username,
        "display": account.get("display_name") or username,
    }


async def require_permission(datasette, request: Request, action: str) -> dict:
    """Return the actor if it holds ``action``; raise Forbidden otherwise."""
    actor = request.actor
    allowed = await datasette.permission_allowed(actor, action, default=False)
    if not actor or not allowed:
        raise Forbidden("You do not have permission to perform this action")
    return actor


def set_actor_cookie(datasette, response: Response, actor: dict, max_age: int) -> None:
    response.set_cookie(
        "ds_actor",
        datasette.sign({"a": actor}, "actor"),
        httponly=True,
        samesite="lax",
        max_age=max_age,
    )


# -----------------------------------------------------------------------------
# Request / Response Helpers
# -----------------------------------------------------------------------------


async def read_payload(request: Request) -> dict:
    """Request body as a dict, from JSON or form encoding."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        body = await request.post_body()
        if not body:
            return {}
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            raise InvalidInput("Request body is not valid JSON") from None
        if not isinstance(data, dict):
            raise InvalidInput("Request body must be a JSON object")
        return data
    return dict(await request.post_vars())


def parse_int(value, name: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidInput(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} must be an integer") from None


def ok(data: dict, status: int = 200) -> Response:
    return Response.json({"ok": True, **data}, status=status)


def error_response(error: CatalogError) -> Response:
    return Response.json(
        {"ok": False, "error": error.kind, "message": error.message},
        status=ERROR_STATUS.get(error.kind, 500),
    )


def method_not_allowed() -> Response:
    return Response.json(
        {"ok": False, "error": "method_not_allowed", "message": "Method not allowed"},
        status=405,
    )


def catalog_route(*methods: str):
    """Restrict a route to the given HTTP methods and map CatalogError to JSON."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(request: Request, datasette):
            if request.method not in methods:
                return method_not_allowed()
            try:
                return await fn(request, datasette)
            except CatalogError as e:
                if e.kind == "unavailable":
                    logger.error(f"{request.path}: {e.message}")
                return error_response(e)

        return wrapper

    return decorator


# -----------------------------------------------------------------------------
# Authentication Routes
# -----------------------------------------------------------------------------


@catalog_route("POST")
async def register(request: Request, datasette) -> Response:
    """Create a client account."""
    from datasette_price_catalog.auth import hash_password

    data = await read_payload(request)
    password = str(data.get("password") or "")
    if not password:
        raise InvalidInput("password is required")

    client = get_service(datasette).register_client(
        str(data.get("name") or ""),
        str(data.get("login") or ""),
        str(data.get("email") or ""),
        str(data.get("phone") or ""),
        hash_password(password),
    )
    return ok({"client": client.to_public_dict()}, status=201)


@catalog_route("POST")
async def client_login(request: Request, datasette) -> Response:
    """Log a client in and set the actor cookie."""
    from datasette_price_catalog.auth import authenticate_client

    data = await read_payload(request)
    login = str(data.get("login") or "").strip()
    password = str(data.get("password") or "")
    if not login or not password:
        raise InvalidInput("Please enter your login and password.")

    service = get_service(datasette)
    client = service.get_client_by_login(login)
    if not authenticate_client(client, password):
        return Response.json(
            {"ok": False, "error": "invalid_credentials", "message": "Invalid login or password."},
            status=401,
        )
    service.check_login_allowed(client)

    actor = client_actor(client)
    response = ok({"actor": actor, "blocked": client.blocked})
    set_actor_cookie(datasette, response, actor, max_age=3600 * 24)
    return response


@catalog_route("POST")
async def admin_login(request: Request, datasette) -> Response:
    """Log an administrator in and set the actor cookie."""
    from datasette_price_catalog.auth import authenticate_admin

    data = await read_payload(request)
    username = str(data.get("username") or "").strip()
    password = str(data.get("password") or "")
    if not username or not password:
        raise InvalidInput("Please enter your username and password.")

    config = get_plugin_config(datasette)
    ensure_db_exists(config.db_path)
    account = authenticate_admin(config.db_path, username, password)
    if account is None:
        return Response.json(
            {"ok": False, "error": "invalid_credentials", "message": "Invalid username or password."},
            status=401,
        )

    actor = admin_actor(account)
    response = ok({"actor": actor})
    set_actor_cookie(datasette, response, actor, max_age=3600 * 8)
    return response


@catalog_route("POST")
async def logout(request: Request, datasette) -> Response:
    response = ok({})
    response.set_cookie("ds_actor", "", max_age=0)
    return response


# -----------------------------------------------------------------------------
# Contribution Routes
# -----------------------------------------------------------------------------


@catalog_route("GET", "POST")
async def contributions(request: Request, datasette) -> Response:
    """POST: a client submits a price. GET: an administrator lists the queue."""
    service = get_service(datasette)

    if request.method == "POST":
        actor = await require_permission(datasette, request, "price_catalog_submit")
        data = await read_payload(request)
        contribution = service.submit_contribution(
            actor["principal_id"],
            data.get("product_id"),
            data.get("market_id"),
            data.get("price"),
            note=data.get("note") or "",
            kind=data.get("kind") or "text",
        )
        return ok({"contribution": contribution.to_dict()}, status=201)

    await require_permission(datasette, request, "price_catalog_moderate")
    status = request.args.get("status", "pending")
    limit = parse_int(request.args.get("limit"), "limit")
    items = service.list_contributions(status, limit)
    return ok({"contributions": [c.to_dict() for c in items]})


@catalog_route("POST")
async def approve_contribution(request: Request, datasette) -> Response:
    actor = await require_permission(datasette, request, "price_catalog_moderate")
    contribution_id = request.url_vars["contribution_id"]
    result = get_service(datasette).approve_contribution(contribution_id, actor["id"])
    return ok(result.to_dict())


@catalog_route("POST")
async def reject_contribution(request: Request, datasette) -> Response:
    actor = await require_permission(datasette, request, "price_catalog_moderate")
    contribution_id = request.url_vars["contribution_id"]
    data = await read_payload(request)
    result = get_service(datasette).reject_contribution(
        contribution_id, actor["id"], data.get("reason")
    )
    return ok(result.to_dict())


# -----------------------------------------------------------------------------
# Client Administration Routes
# -----------------------------------------------------------------------------


@catalog_route("GET")
async def clients(request: Request, datasette) -> Response:
    """All clients newest first; ``?blocked=1`` keeps blocked ones."""
    await require_permission(datasette, request, "price_catalog_moderate")
    blocked_only = request.args.get("blocked", "0") not in ("0", "false")
    limit = parse_int(request.args.get("limit"), "limit")
    items = get_service(datasette).list_clients(blocked_only, 200 if limit is None else limit)
    return ok({"clients": [c.to_public_dict() for c in items]})


@catalog_route("GET")
async def client_detail(request: Request, datasette) -> Response:
    await require_permission(datasette, request, "price_catalog_moderate")
    client_id = request.url_vars["client_id"]
    client = get_service(datasette).get_client(client_id)
    if client is None:
        raise NotFound(f"Client not found: {client_id}")
    return ok({"client": client.to_public_dict()})


@catalog_route("POST")
async def block_client(request: Request, datasette) -> Response:
    actor = await require_permission(datasette, request, "price_catalog_moderate")
    data = await read_payload(request)
    state = get_service(datasette).block_client(
        request.url_vars["client_id"],
        data.get("kind") or "permanent",
        actor["id"],
        reason=data.get("reason") or "",
        days=parse_int(data.get("days"), "days"),
    )
    return ok({"trust_state": state.to_dict()})


@catalog_route("POST")
async def unblock_client(request: Request, datasette) -> Response:
    actor = await require_permission(datasette, request, "price_catalog_moderate")
    state = get_service(datasette).unblock_client(request.url_vars["client_id"], actor["id"])
    return ok({"trust_state": state.to_dict()})


@catalog_route("POST")
async def terminate_client(request: Request, datasette) -> Response:
    actor = await require_permission(datasette, request, "price_catalog_moderate")
    data = await read_payload(request)
    entry = get_service(datasette).terminate_client(
        request.url_vars["client_id"],
        actor["id"],
        reason=data.get("reason") or "",
    )
    return ok({"blacklist_entry": entry.to_dict() if entry else None})


# -----------------------------------------------------------------------------
# Blacklist Routes
# -----------------------------------------------------------------------------


@catalog_route("GET")
async def blacklist(request: Request, datasette) -> Response:
    await require_permission(datasette, request, "price_catalog_moderate")
    active_only = request.args.get("active_only", "1") not in ("0", "false")
    entries = get_service(datasette).list_blacklist_entries(active_only=active_only)
    return ok({"entries": [e.to_dict() for e in entries]})


@catalog_route("GET")
async def blacklist_check(request: Request, datasette) -> Response:
    await require_permission(datasette, request, "price_catalog_moderate")
    contact = request.args.get("contact", "")
    blocked = get_service(datasette).is_contact_blacklisted(contact)
    return ok({"contact": contact, "blacklisted": blocked})


@catalog_route("POST")
async def release_blacklist_entry(request: Request, datasette) -> Response:
    actor = await require_permission(datasette, request, "price_catalog_moderate")
    entry = get_service(datasette).release_blacklist_entry(
        request.url_vars["entry_id"], actor["id"]
    )
    return ok({"entry": entry.to_dict()})


@catalog_route("POST")
async def sweep_blacklist(request: Request, datasette) -> Response:
    await require_permission(datasette, request, "price_catalog_moderate")
    result = get_service(datasette).run_expiry_sweep()
    return ok(result.to_dict())


# -----------------------------------------------------------------------------
# Price Routes
# -----------------------------------------------------------------------------


@catalog_route("POST")
async def set_price(request: Request, datasette) -> Response:
    """Direct price write by an administrator, on its own behalf or a market's."""
    actor = await require_permission(datasette, request, "price_catalog_moderate")
    data = await read_payload(request)
    source = data.get("source") or PriceSource.ADMIN.value
    if source not in (PriceSource.ADMIN.value, PriceSource.MARKET.value):
        raise InvalidInput("source must be 'admin' or 'market'")

    entry = get_service(datasette).set_price(
        data.get("product_id"),
        data.get("market_id"),
        data.get("price"),
        source,
        data.get("author") or actor.get("display") or actor["id"],
    )
    return ok({"price": entry.to_dict()})


# -----------------------------------------------------------------------------
# Audit Routes
# -----------------------------------------------------------------------------


@catalog_route("GET")
async def events(request: Request, datasette) -> Response:
    """Audit log, newest first, optionally filtered to one subject."""
    await require_permission(datasette, request, "price_catalog_moderate")
    limit = parse_int(request.args.get("limit"), "limit")
    items = get_service(datasette).get_events(
        request.args.get("subject_type") or None,
        request.args.get("subject_id") or None,
        200 if limit is None else limit,
    )
    return ok({"events": [e.to_dict() for e in items]})


# -----------------------------------------------------------------------------
# Datasette Hooks
# -----------------------------------------------------------------------------


@hookimpl
def register_routes():
    """Register plugin routes with Datasette."""
    return [
        # Authentication
        (rf"^{ROUTE_PREFIX}/register$", register),
        (rf"^{ROUTE_PREFIX}/login$", client_login),
        (rf"^{ROUTE_PREFIX}/admin-login$", admin_login),
        (rf"^{ROUTE_PREFIX}/logout$", logout),
        # Contributions
        (rf"^{ROUTE_PREFIX}/contributions$", contributions),
        (rf"^{ROUTE_PREFIX}/contributions/(?P<contribution_id>[^/]+)/approve$", approve_contribution),
        (rf"^{ROUTE_PREFIX}/contributions/(?P<contribution_id>[^/]+)/reject$", reject_contribution),
        # Clients
        (rf"^{ROUTE_PREFIX}/clients$", clients),
        (rf"^{ROUTE_PREFIX}/clients/(?P<client_id>[^/]+)$", client_detail),
        (rf"^{ROUTE_PREFIX}/clients/(?P<client_id>[^/]+)/block$", block_client),
        (rf"^{ROUTE_PREFIX}/clients/(?P<client_id>[^/]+)/unblock$", unblock_client),
        (rf"^{ROUTE_PREFIX}/clients/(?P<client_id>[^/]+)/terminate$", terminate_client),
        # Blacklist
        (rf"^{ROUTE_PREFIX}/blacklist$", blacklist),
        (rf"^{ROUTE_PREFIX}/blacklist/check$", blacklist_check),
        (rf"^{ROUTE_PREFIX}/blacklist/sweep$", sweep_blacklist),
        (rf"^{ROUTE_PREFIX}/blacklist/(?P<entry_id>[^/]+)/release$", release_blacklist_entry),
        # Prices
        (rf"^{ROUTE_PREFIX}/prices$", set_price),
        # Audit
        (rf"^{ROUTE_PREFIX}/events$", events),
    ]


@hookimpl
def skip_csrf(datasette, scope):
    """
    Skip CSRF for the plugin's JSON API.

    Every state-changing route checks the signed actor's permissions itself.
    """
    path = scope.get("path", "")
    if path.startswith(f"{ROUTE_PREFIX}/"):
        return True
    return None


@hookimpl
def startup(datasette):
    """
    Run on Datasette startup.

    Applies migrations, syncs the admin account from environment variables
    and, if configured, starts the blacklist sweeper in this process.
    """

    async def inner():
        from datasette_price_catalog.auth import sync_admin_from_env
        from datasette_price_catalog.migrations import check_schema

        config = get_plugin_config(datasette)
        ensure_db_exists(config.db_path)
        version = check_schema(config.db_path)
        logger.info(f"Price catalog database {config.db_path} at schema version {version}")
        sync_admin_from_env(config.db_path, verbose=True)

        if config.sweeper.run_in_process:
            service = get_service(datasette)
            task = asyncio.get_running_loop().create_task(
                service.sweeper.run_forever(config.sweeper.interval_seconds)
            )
            _background_tasks.add(task)
            task.add_done_callback(_background_tasks.discard)

    return inner


@hookimpl
def permission_allowed(datasette, actor, action):
    """Handle permission checks for the plugin's custom actions."""
    if not actor:
        return None

    principal_type = actor.get("principal_type")

    # Client permissions
    if action == "price_catalog_submit":
        return principal_type == "client"

    # Administrator permissions
    if action == "price_catalog_moderate":
        return principal_type == "admin"

    return None
