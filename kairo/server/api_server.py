"""
HTTP/WebSocket API server for kairo.

Observers connect to ``/ws`` to start and stop runs and to receive live
progress events. Session state, edit history and edit rollback are also
exposed over HTTP.
"""

import asyncio
import json
import logging
import re
import signal
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from aiohttp import WSMsgType, web

from kairo import config
from kairo._version import KAIRO_VERSION
from kairo.execution.pipeline import ExecutionPipeline
from kairo.execution.single_loop import SingleLoopAgent
from kairo.llm.client import CompletionClient, get_client
from kairo.models import SessionStatus
from kairo.server.broadcaster import ProgressBroadcaster
from kairo.state.store import EditNotFoundError, SessionNotFoundError, StateStore, StateStoreError
from kairo.tools.registry import ToolRegistry, build_default_registry

logger = logging.getLogger(__name__)

_ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")

RUN_MODES = ("plan", "loop")


def _strip_ansi(value: str) -> str:
    return _ANSI_ESCAPE_RE.sub("", value)


def _sanitize_payload(payload: Any) -> Any:
    if isinstance(payload, str):
        return _strip_ansi(payload)
    if isinstance(payload, list):
        return [_sanitize_payload(item) for item in payload]
    if isinstance(payload, dict):
        return {key: _sanitize_payload(val) for key, val in payload.items()}
    return payload


class RequestError(ValueError):
    """A websocket action that cannot be served as sent."""


class KairoAPIServer:
    """HTTP/WebSocket front end over the execution pipeline."""

    def __init__(
        self,
        store: Optional[StateStore] = None,
        registry: Optional[ToolRegistry] = None,
        client_factory: Callable[[], CompletionClient] = get_client,
        projects_dir: Optional[Path] = None,
    ):
        """
        Initialize the kairo API server

        Args:
            store: session state store (defaults to ``config.STATE_DIR``)
            registry: tool registry shared by every run
            client_factory: returns the completion client for a new run
            projects_dir: directory whose subdirectories are listed as projects
        """
        self.app = web.Application()
        self.store = store or StateStore()
        self.registry = registry or build_default_registry()
        self.client_factory = client_factory
        self.projects_dir = Path(projects_dir or config.PROJECTS_DIR)
        self.broadcaster = ProgressBroadcaster()
        self.stop_events: Dict[str, threading.Event] = {}
        self.active_runs: Dict[str, asyncio.Task] = {}
        self.starting_runs: Set[str] = set()
        self.websockets: List[web.WebSocketResponse] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._shutdown_requested = False
        self._setup_lifecycle_hooks()
        self._setup_routes()

    def _setup_routes(self):
        """Setup HTTP routes"""
        self.app.router.add_get('/api/v1/health', self.handle_health)
        self.app.router.add_get('/api/v1/sessions', self.handle_list_sessions)
        self.app.router.add_get('/api/v1/sessions/{session_id}', self.handle_get_session)
        self.app.router.add_delete('/api/v1/sessions/{session_id}', self.handle_delete_session)
        self.app.router.add_get('/api/v1/sessions/{session_id}/edits', self.handle_list_edits)
        self.app.router.add_post('/api/v1/sessions/{session_id}/edits/{edit_id}/rollback', self.handle_rollback_edit)
        self.app.router.add_get('/api/v1/projects', self.handle_list_projects)
        self.app.router.add_get('/ws', self.handle_websocket)

    def _setup_lifecycle_hooks(self) -> None:
        self.app.on_startup.append(self._on_startup)
        self.app.on_cleanup.append(self._on_cleanup)

    async def _on_startup(self, _app: web.Application) -> None:
        self._loop = asyncio.get_running_loop()
        self.broadcaster.bind(self._loop)

    async def _on_cleanup(self, _app: web.Application) -> None:
        for event in self.stop_events.values():
            event.set()
        await self.broadcaster.close()

    # ---------- projects ----------

    def list_projects(self) -> List[Dict[str, Any]]:
        if not self.projects_dir.is_dir():
            return []
        return [
            {"name": child.name, "path": str(child)}
            for child in sorted(self.projects_dir.iterdir())
            if child.is_dir() and not child.name.startswith(".")
        ]

    def _resolve_project(self, project: Optional[str]) -> Path:
        if not project:
            raise RequestError("No project specified")
        path = Path(project)
        if not path.is_absolute():
            path = self.projects_dir / project
        path = path.resolve()
        if not path.is_dir():
            raise RequestError(f"Project not found: {project}")
        return path

    # ---------- runs ----------

    def is_running(self, session_id: str) -> bool:
        if session_id in self.starting_runs:
            return True
        task = self.active_runs.get(session_id)
        return task is not None and not task.done()

    async def start_run(self, request: str, project: Optional[str], session_id: Optional[str] = None,
                        mode: str = "plan") -> str:
        """Start a run in a worker thread and return its session id."""
        if not request or not request.strip():
            raise RequestError("No request specified")
        if mode not in RUN_MODES:
            raise RequestError(f"Unknown mode: {mode}")
        root = self._resolve_project(project)
        if session_id:
            if self.is_running(session_id):
                raise RequestError(f"Session already running: {session_id}")
            # reserved until the task is registered so a concurrent start-run is refused
            self.starting_runs.add(session_id)
        try:
            session = await asyncio.to_thread(
                self.store.get_or_create_session, session_id, request.strip()[:60], root.name,
            )
            stop_event = threading.Event()
            self.stop_events[session.id] = stop_event
            self.active_runs[session.id] = asyncio.create_task(
                self._execute_run(session.id, request, root, mode, stop_event)
            )
        finally:
            if session_id:
                self.starting_runs.discard(session_id)
        logger.info(f"Run started for session {session.id} ({mode}) in {root}")
        return session.id

    async def _execute_run(self, session_id: str, request: str, root: Path, mode: str,
                           stop_event: threading.Event) -> None:
        try:
            client = self.client_factory()
            if mode == "loop":
                agent = SingleLoopAgent(client, self.registry, self.store, emit=self.broadcaster.publish)
            else:
                agent = ExecutionPipeline(client, self.registry, self.store, emit=self.broadcaster.publish)
            result = await asyncio.to_thread(agent.run, session_id, request, root, stop_event)
            logger.info(f"Run finished for session {session_id}: success={result.success}")
        except Exception as e:
            logger.error(f"Error executing run for {session_id}: {e}", exc_info=True)
            self.broadcaster.publish({
                "type": "run-error",
                "session": session_id,
                "timestamp": datetime.now().isoformat(),
                "error": _strip_ansi(str(e)),
            })
        finally:
            self.active_runs.pop(session_id, None)
            self.stop_events.pop(session_id, None)

    async def stop_run(self, session_id: Optional[str]) -> bool:
        """Signal the session's run to stop; returns False when nothing was running."""
        if not session_id:
            raise RequestError("No session specified")
        event = self.stop_events.get(session_id)
        if event is None:
            return False
        event.set()
        try:
            await asyncio.to_thread(self.store.update_session, session_id, SessionStatus.STOPPED)
        except StateStoreError as e:
            logger.error(f"Could not flag session {session_id} stopped: {e}")
        logger.info(f"Stop requested for session {session_id}")
        return True

    async def rollback_edit(self, session_id: Optional[str], edit_id: Optional[str]) -> Dict[str, Any]:
        """Undo one recorded file edit of an idle session."""
        if not session_id:
            raise RequestError("No session specified")
        if not edit_id:
            raise RequestError("No edit specified")
        if self.is_running(session_id):
            raise RequestError(f"Session is running: {session_id}")
        session = await asyncio.to_thread(self.store.get_session, session_id)
        root = self._resolve_project(session.project)
        rollback = await asyncio.to_thread(self.store.rollback_edit, session_id, edit_id, root)
        logger.info(f"Rolled back edit {edit_id} of session {session_id}")
        return rollback.to_dict(include_backup=False)

    # ---------- websocket ----------

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Handle WebSocket connections for control actions and real-time updates"""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        async def send(event: Dict[str, Any]) -> None:
            await ws.send_str(json.dumps(_sanitize_payload(event), default=str))

        self.websockets.append(ws)
        observer_id = await self.broadcaster.subscribe(send)
        logger.info(f"WebSocket client connected. Total clients: {len(self.websockets)}")

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError:
                        await ws.send_json({'type': 'error', 'message': 'Invalid JSON'})
                        continue
                    await ws.send_json(_sanitize_payload(await self._handle_action(data)))
                elif msg.type == WSMsgType.ERROR:
                    logger.error(f'WebSocket error: {ws.exception()}')
        finally:
            await self.broadcaster.unsubscribe(observer_id)
            self.websockets.remove(ws)
            logger.info(f"WebSocket client disconnected. Total clients: {len(self.websockets)}")

        return ws

    async def _handle_action(self, data: Any) -> Dict[str, Any]:
        """Serve one observer action and return the direct reply."""
        if not isinstance(data, dict):
            return {'type': 'error', 'message': 'Expected a JSON object'}
        action = data.get('type')
        try:
            if action == 'start-run':
                session_id = await self.start_run(
                    data.get('request', ''),
                    data.get('project'),
                    data.get('session'),
                    data.get('mode') or 'plan',
                )
                return {'type': 'run-started', 'session': session_id}
            if action == 'stop-run':
                stopped = await self.stop_run(data.get('session'))
                return {'type': 'run-stopping' if stopped else 'not-running', 'session': data.get('session')}
            if action == 'get-projects':
                return {'type': 'projects', 'projects': self.list_projects()}
            if action == 'get-state':
                session_id = data.get('session')
                if not session_id:
                    raise RequestError("No session specified")
                state = await asyncio.to_thread(self.store.snapshot, session_id)
                return {'type': 'state', 'session': session_id, 'running': self.is_running(session_id),
                        'state': state}
            if action == 'rollback-edit':
                edit = await self.rollback_edit(data.get('session'), data.get('edit'))
                return {'type': 'edit-rolled-back', 'session': data.get('session'), 'edit': edit}
        except (RequestError, StateStoreError) as e:
            return {'type': 'error', 'action': action, 'message': str(e)}
        return {'type': 'error', 'action': action, 'message': f'Unknown action: {action}'}

    # ---------- HTTP ----------

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            'status': 'success',
            'version': KAIRO_VERSION,
            'active_runs': len(self.active_runs),
            'observers': self.broadcaster.observer_count,
        })

    async def handle_list_sessions(self, request: web.Request) -> web.Response:
        """List all sessions"""
        try:
            sessions = await asyncio.to_thread(self.store.list_sessions)
            return web.json_response({
                'status': 'success',
                'sessions': [
                    dict(session.to_dict(), running=self.is_running(session.id))
                    for session in sessions
                ],
            })
        except StateStoreError as e:
            logger.error(f"Error listing sessions: {e}", exc_info=True)
            return web.json_response({'status': 'error', 'message': str(e)}, status=500)

    async def handle_get_session(self, request: web.Request) -> web.Response:
        """Full state snapshot of one session"""
        session_id = request.match_info['session_id']
        try:
            state = await asyncio.to_thread(self.store.snapshot, session_id)
        except SessionNotFoundError:
            return web.json_response({'status': 'error', 'message': 'Session not found'}, status=404)
        except StateStoreError as e:
            logger.error(f"Error reading session {session_id}: {e}", exc_info=True)
            return web.json_response({'status': 'error', 'message': str(e)}, status=500)
        return web.json_response({
            'status': 'success',
            'running': self.is_running(session_id),
            'state': _sanitize_payload(state),
        })

    async def handle_delete_session(self, request: web.Request) -> web.Response:
        session_id = request.match_info['session_id']
        if self.is_running(session_id):
            return web.json_response({'status': 'error', 'message': 'Session is running'}, status=409)
        try:
            await asyncio.to_thread(self.store.delete_session, session_id)
        except SessionNotFoundError:
            return web.json_response({'status': 'error', 'message': 'Session not found'}, status=404)
        return web.json_response({'status': 'success', 'message': 'Session deleted'})

    async def handle_list_edits(self, request: web.Request) -> web.Response:
        """Edit history of one session, newest first"""
        session_id = request.match_info['session_id']
        try:
            edits = await asyncio.to_thread(self.store.list_edits, session_id)
        except SessionNotFoundError:
            return web.json_response({'status': 'error', 'message': 'Session not found'}, status=404)
        return web.json_response({
            'status': 'success',
            'edits': [edit.to_dict(include_backup=False) for edit in edits],
        })

    async def handle_rollback_edit(self, request: web.Request) -> web.Response:
        session_id = request.match_info['session_id']
        try:
            edit = await self.rollback_edit(session_id, request.match_info['edit_id'])
        except (SessionNotFoundError, EditNotFoundError) as e:
            return web.json_response({'status': 'error', 'message': str(e)}, status=404)
        except (RequestError, StateStoreError) as e:
            return web.json_response({'status': 'error', 'message': str(e)}, status=409)
        return web.json_response({'status': 'success', 'edit': edit})

    async def handle_list_projects(
self, request: web.Request) -> web.Response:
        return web.json_response({'status': 'success', 'projects': self.list_projects()})

    # ---------- lifecycle ----------

    def _request_shutdown(self, reason: str = "signal") -> None:
        if self._shutdown_requested:
            return
        self._shutdown_requested = True
        for event in self.stop_events.values():
            event.set()
        if self._loop and self._shutdown_event:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)
        logger.info("Shutdown requested (%s).", reason)

    async def _run_app(self, host: str, port: int) -> None:
        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()
        try:
            await self._shutdown_event.wait()
        finally:
            for ws in list(self.websockets):
                await ws.close()
            await runner.cleanup()

    def start(self, host: str = config.SERVER_HOST, port: int = config.SERVER_PORT):
        """
        Start the API server

        Args:
            host: Host to bind to
            port: Port to listen on
        """
        logger.info(f"Starting kairo API server on http://{host}:{port}")
        previous_handler = signal.signal(signal.SIGINT, lambda *_args: self._request_shutdown("sigint"))
        try:
            asyncio.run(self._run_app(host, port))
        except KeyboardInterrupt:
            self._request_shutdown("keyboard")
        finally:
            signal.signal(signal.SIGINT, previous_handler)


def main():
    """Main entry point for API server"""
    import argparse

    parser = argparse.ArgumentParser(description='kairo HTTP/WebSocket API server')
    parser.add_argument('--host', default=config.SERVER_HOST, help='Host to bind to')
    parser.add_argument('--port', type=int, default=config.SERVER_PORT, help='Port to listen on')
    parser.add_argument('--log-level', default='INFO', help='Logging level')

    args = parser.parse_args()

    logging.basicConfig(level=args.log_level)

    server = KairoAPIServer()
    server.start(args.host, args.port)


if __name__ == '__main__':
    main()
