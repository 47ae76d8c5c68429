import math

from aiohttp import web

from trending.config import settings
from trending.errors import FetchError, StoreUnavailableError
from trending.service import REFRESH_PATHS, TrendingService
from trending.utils.logging_config import logger

SERVICE_KEY = web.AppKey("service", TrendingService)

routes = web.RouteTableDef()


def _service(request: web.Request) -> TrendingService:
    return request.app[SERVICE_KEY]


def _optional_int(value, default=None):
    """Parses rank bounds. Missing, null, 'Infinity' and non-numeric values give `default`."""
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isinf(number) or math.isnan(number):
        return default
    return int(number)


@routes.get("/")
async def index(request: web.Request) -> web.Response:
    return web.Response(text="Trending ranking API is running")


@routes.get("/top-tokens")
async def top_tokens(request: web.Request) -> web.Response:
    limit = _optional_int(request.query.get("limit"), settings.DEFAULT_TOP_LIMIT)
    if limit <= 0:
        limit = settings.DEFAULT_TOP_LIMIT
    tokens = await _service(request).get_top_tokens(limit)
    return web.json_response(tokens)


@routes.get("/token/{address}")
async def token(request: web.Request) -> web.Response:
    try:
        record = await _service(request).get_token(request.match_info["address"])
    except StoreUnavailableError as e:
        logger.warning("Token lookup failed", error=str(e))
        return web.json_response({"error": "Score store unavailable"}, status=503)
    if record is None:
        return web.json_response({"error": "Token not found"}, status=404)
    return web.json_response(record)


@routes.post("/update-scores")
async def update_scores(request: web.Request) -> web.Response:
    body = await _json_body(request)
    start = max(_optional_int(body.get("startRank"), 0), 0)
    end = _optional_int(body.get("endRank"))
    paths = body.get("paths") or list(REFRESH_PATHS)
    if isinstance(paths, str):
        paths = [paths]
    if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
        return web.json_response({"error": "paths must be a string or a list of strings"}, status=400)
    try:
        results = await _service(request).trigger_refresh(start, end, paths)
    except ValueError as e:
        return web.json_response({"error": str(e)}, status=400)
    return web.json_response({"success": True, "results": results})


@routes.post("/clear-cache")
async def clear_cache(request: web.Request) -> web.Response:
    _service(request).invalidate_cache()
    return web.json_response({"success": True, "message": "Cache cleared"})


@routes.post("/tokens")
async def track_token(request: web.Request) -> web.Response:
    body = await _json_body(request)
    address = (body.get("address") or "").strip()
    if not address:
        return web.json_response({"error": "address is required"}, status=400)
    try:
        record = await _service(request).track_token(
            address, body.get("name") or "", body.get("symbol") or ""
        )
    except FetchError as e:
        logger.warning("Could not bootstrap token", address=address, error=str(e))
        return web.json_response({"error": str(e)}, status=502)
    except StoreUnavailableError as e:
        logger.error("Could not persist token", address=address, error=str(e))
        return web.json_response({"error": "Score store unavailable"}, status=503)
    return web.json_response(record, status=201)


@routes.post("/tokenpost")
async def token_posts(request: web.Request) -> web.Response:
    tickers = _tickers(await _json_body(request))
    if tickers is None:
        return web.json_response({"error": "memeCoins must be a non-empty list of tickers"}, status=400)
    try:
        posts = await _service(request).social_posts(tickers)
    except FetchError as e:
        logger.warning("Could not fetch token posts", tickers=tickers, error=str(e))
        return web.json_response({"error": "Failed to fetch token posts"}, status=502)
    return web.json_response(posts)


@routes.post("/social-analytics")
async def social_analytics(request: web.Request) -> web.Response:
    tickers = _tickers(await _json_body(request))
    if tickers is None:
        return web.json_response({"error": "memeCoins must be a non-empty list of tickers"}, status=400)
    try:
        analysis, posts_analyzed = await _service(request).social_analytics(tickers)
    except FetchError as e:
        logger.warning("Social analytics failed", tickers=tickers, error=str(e))
        return web.json_response({"error": "Failed to analyze social data"}, status=502)
    return web.json_response({"success": True, "analysis": analysis, "postsAnalyzed": posts_analyzed})


def _tickers(body: dict):
    """Cleaned, de-duplicated `memeCoins` from a request body, or None if unusable."""
    coins = body.get("memeCoins")
    if isinstance(coins, str):
        coins = [coins]
    if not isinstance(coins, list):
        return None
    tickers = list(dict.fromkeys(c.strip() for c in coins if isinstance(c, str) and c.strip()))
    return tickers or None


async def _json_body(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(text="Invalid JSON body")
    return body if isinstance(body, dict) else {}


def create_app(service: TrendingService) -> web.Application:
    app = web.Application()
    app[SERVICE_KEY] = service
    app.add_routes(routes)
    return app
