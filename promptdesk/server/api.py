"""HTTP API for the promptdesk server."""

from pathlib import Path
from typing import Type, TypeVar

from aiohttp import web
from loguru import logger

from .errors import InvalidInput, create_error_middleware
from .models import (
    CopyWithSourceIn,
    FavoriteIn,
    FavoriteUpdate,
    ProjectIn,
    PromptIn,
    ProxyIn,
    RequestBody,
)
from .ranking import highlight_ranges, rank_files
from .sources import compose_with_sources, read_project_file

B = TypeVar("B", bound=RequestBody)

TRUTHY = {"1", "true", "yes", "on"}


def create_api_app(server) -> web.Application:
    """Create the aiohttp application with routes."""
    app = web.Application(middlewares=[create_error_middleware(server.errors)])
    app['server'] = server

    # Projects
    app.router.add_get('/api/projects', handle_list_projects)
    app.router.add_post('/api/projects', handle_create_project)
    app.router.add_put('/api/projects/{id}', handle_update_project)
    app.router.add_delete('/api/projects/{id}', handle_delete_project)
    app.router.add_put('/api/projects/{id}/move-{direction:up|down}', handle_move_project)
    app.router.add_post('/api/projects/{id}/scan', handle_scan_project)
    app.router.add_get('/api/projects/{id}/files', handle_project_files)
    app.router.add_get('/api/projects/{id}/file-content', handle_file_content)
    app.router.add_put('/api/active-project/{id}', handle_set_active_project)

    # Prompts
    app.router.add_get('/api/prompts/{project_id}', handle_get_prompt)
    app.router.add_post('/api/prompts/{project_id}', handle_save_prompt)
    app.router.add_post('/api/copy-with-source', handle_copy_with_source)

    # Favorites
    app.router.add_get('/api/favorites', handle_list_favorites)
    app.router.add_post('/api/favorites', handle_create_favorite)
    app.router.add_put('/api/favorites/{id}', handle_update_favorite)
    app.router.add_delete('/api/favorites/{id}', handle_delete_favorite)

    # Proxy configs
    app.router.add_get('/api/claude-proxies', handle_list_proxies)
    app.router.add_post('/api/claude-proxies', handle_create_proxy)
    app.router.add_put('/api/claude-proxies/{id}', handle_update_proxy)
    app.router.add_delete('/api/claude-proxies/{id}', handle_delete_proxy)
    app.router.add_put('/api/claude-proxies/{id}/activate', handle_activate_proxy)
    app.router.add_put('/api/claude-proxies/{id}/move-{direction:up|down}', handle_move_proxy)
    app.router.add_post('/api/claude-proxies/{id}/copy', handle_copy_proxy)

    # Server
    app.router.add_get('/api/status', handle_status)
    app.router.add_get('/api/metrics', handle_metrics)

    # Relay
    prefix = server.relay.mount_prefix
    app.router.add_route('*', prefix, server.relay.handle)
    app.router.add_route('*', prefix + '/{tail:.*}', server.relay.handle)

    async def relay_session(app: web.Application):
        await server.relay.open()
        yield
        await server.relay.close()

    app.cleanup_ctx.append(relay_session)

    return app


async def parse_body(request: web.Request, schema: Type[B]) -> B:
    """Validate a JSON request body against its schema."""
    data = await request.json() if request.body_exists else {}
    if not isinstance(data, dict):
        raise InvalidInput("request body must be a JSON object")
    return schema.model_validate(data)


def _proxies_payload(store) -> dict:
    return {
        'proxies': [p.to_json() for p in store.data.proxies],
        'activeProxyId': store.data.active_proxy_id,
    }


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

async def handle_list_projects(request: web.Request) -> web.Response:
    store = request.app['server'].store
    return web.json_response([p.to_json() for p in store.data.projects])


async def handle_create_project(request: web.Request) -> web.Response:
    server = request.app['server']
    body = await parse_body(request, ProjectIn)
    project = await server.store.add_project(body)
    logger.info(f"Added project {project.name} at {project.path}")
    return web.json_response(project.to_json(), status=201)


async def handle_update_project(request: web.Request) -> web.Response:
    server = request.app['server']
    project_id = request.match_info['id']
    body = await parse_body(request, ProjectIn)

    project = await server.store.update_project(project_id, body)
    server.file_cache.invalidate(project_id)
    return web.json_response(project.to_json())


async def handle_delete_project(request: web.Request) -> web.Response:
    server = request.app['server']
    project_id = request.match_info['id']

    await server.store.delete_project(project_id)
    server.file_cache.invalidate(project_id)
    return web.json_response({'success': True})


async def handle_move_project(request: web.Request) -> web.Response:
    store = request.app['server'].store
    projects = await store.move_project(
        request.match_info['id'], request.match_info['direction']
    )
    return web.json_response([p.to_json() for p in projects])


async def handle_scan_project(request: web.Request) -> web.Response:
    """Rescan a project and refresh its cached file list."""
    server = request.app['server']
    project = server.store.get_project(request.match_info['id'])

    snapshot = await server.file_cache.load(project)
    return web.json_response({'success': True, 'fileCount': len(snapshot.files)})


async def handle_project_files(request: web.Request) -> web.Response:
    """Ranked file suggestions for the @-mention dropdown."""
    server = request.app['server']
    project = server.store.get_project(request.match_info['id'])
    query = request.query.get('filter', '')
    with_highlights = request.query.get('highlight', '').lower() in TRUTHY

    snapshot = await server.file_cache.get_or_load(project)

    with server.metrics.timer("files.rank"):
        ranked = rank_files(snapshot.files, query)[:server.config.files.result_limit]

    if with_highlights:
        return web.json_response([
            {
                'path': path,
                'ranges': [list(span) for span in highlight_ranges(path, query)],
            }
            for path in ranked
        ])
    return web.json_response(ranked)


async def handle_file_content(request: web.Request) -> web.Response:
    server = request.app['server']
    file_path = request.query.get('filePath')
    if not file_path:
        raise InvalidInput("filePath query parameter is required")

    project = server.store.get_project(request.match_info['id'])
    content = await read_project_file(Path(project.path), file_path)
    return web.json_response({'filePath': file_path, 'content': content})


async def handle_set_active_project(request: web.Request) -> web.Response:
    store = request.app['server'].store
    await store.set_active_project(request.match_info['id'])
    return web.json_response({'success': True})


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

async def handle_get_prompt(request: web.Request) -> web.Response:
    store = request.app['server'].store
    return web.json_response({'prompt': store.get_prompt(request.match_info['project_id'])})


async def handle_save_prompt(request: web.Request) -> web.Response:
    store = request.app['server'].store
    body = await parse_body(request, PromptIn)
    await store.set_prompt(request.match_info['project_id'], body.prompt)
    return web.json_response({'success': True})


async def handle_copy_with_source(request: web.Request) -> web.Response:
    """Expand @mentions into the prompt with the mentioned files' contents."""
    store = request.app['server'].store
    body = await parse_body(request, CopyWithSourceIn)
    if not body.project_id:
        raise InvalidInput("projectId is required")

    project = store.get_project(body.project_id)
    content, files_processed = await compose_with_sources(body.content, Path(project.path))

    return web.json_response({
        'contentWithSource': content,
        'filesProcessed': files_processed,
    })


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------

async def handle_list_favorites(request: web.Request) -> web.Response:
    store = request.app['server'].store
    return web.json_response([f.to_json() for f in store.data.favorites])


async def handle_create_favorite(request: web.Request) -> web.Response:
    store = request.app['server'].store
    body = await parse_body(request, FavoriteIn)
    favorite = await store.add_favorite(body)
    return web.json_response(favorite.to_json(), status=201)


async def handle_update_favorite(request: web.Request) -> web.Response:
    store = request.app['server'].store
    body = await parse_body(request, FavoriteUpdate)
    favorite = await store.update_favorite(request.match_info['id'], body)
    return web.json_response(favorite.to_json())


async def handle_delete_favorite(request: web.Request) -> web.Response:
    store = request.app['server'].store
    await store.delete_favorite(request.match_info['id'])
    return web.json_response({'success': True})


# ---------------------------------------------------------------------------
# Proxy configs
# ---------------------------------------------------------------------------

async def handle_list_proxies(request: web.Request) -> web.Response:
    return web.json_response(_proxies_payload(request.app['server'].store))


async def handle_create_proxy(request: web.Request) -> web.Response:
    store = request.app['server'].store
    body = await parse_body(request, ProxyIn)
    proxy = await store.add_proxy(body)
    logger.info(f"Added proxy {proxy.name} -> {proxy.base_url}")
    return web.json_response(proxy.to_json(), status=201)


async def handle_update_proxy(request: web.Request) -> web.Response:
    store = request.app['server'].store
    body = await parse_body(request, ProxyIn)
    proxy = await store.update_proxy(request.match_info['id'], body)
    return web.json_response(proxy.to_json())


async def handle_delete_proxy(request: web.Request) -> web.Response:
    store = request.app['server'].store
    await store.delete_proxy(request.match_info['id'])
    return web.json_response({'success': True})


async def handle_activate_proxy(request: web.Request) -> web.Response:
    store = request.app['server'].store
    proxy = await store.activate_proxy(request.match_info['id'])
    return web.json_response({'success': True, 'activeProxyId': proxy.id})


async def handle_move_proxy(request: web.Request) -> web.Response:
    store = request.app['server'].store
    await store.move_proxy(request.match_info['id'], request.match_info['direction'])
    return web.json_response(_proxies_payload(store))


async def handle_copy_proxy(request: web.Request) -> web.Response:
    store = request.app['server'].store
    proxy = await store.copy_proxy(request.match_info['id'])
    return web.json_response(proxy.to_json(), status=201)


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

async def handle_status(request: web.Request) -> web.Response:
    return web.json_response(request.app['server'].get_status())


async def handle_metrics(request: web.Request) -> web.Response:
    """Export metrics."""
    format = request.query.get('format', 'json')
    metrics = request.app['server'].metrics

    if format == 'prometheus':
        return web.Response(
            text=metrics.export_metrics('prometheus'),
            content_type='text/plain'
        )
    elif format == 'json':
        return web.Response(
            text=metrics.export_metrics('json'),
            content_type='application/json'
        )
    raise InvalidInput(f"unknown metrics format: {format}")
