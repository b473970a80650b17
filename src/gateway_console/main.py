"""Gateway Console: API Gateway settings service for the ML platform dashboard."""

import asyncio
import html
import logging
import time as _time
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse

from .config import load_defaults_overrides, settings
from .endpoint_monitor import EndpointMonitor, EndpointProber
from .kube import KubeContext, bootstrap_kube
from .kube_cleanup import run_cleanups
from .settings_schema import (
    SettingsValidationError,
    effective_values,
    normalize_defaults_overrides,
    tab_defaults,
)
from .settings_store import SettingsStore

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("gateway_console.audit")

# Shared state populated at startup
_store: SettingsStore | None = None
_kube: KubeContext = KubeContext.unavailable()
_defaults: dict[str, dict[str, Any]] = {}
_prober: EndpointProber | None = None
_monitor: EndpointMonitor | None = None
_cleanup_tasks: list[asyncio.Task] = []
_start_time: float = 0.0


def get_settings_store() -> SettingsStore:
    if _store is None:
        raise RuntimeError("Settings store is not initialized")
    return _store


def get_kube_context() -> KubeContext:
    return _kube


def get_prober() -> EndpointProber:
    if _prober is None:
        raise RuntimeError("Endpoint prober is not initialized")
    return _prober


def get_endpoint_monitor() -> EndpointMonitor:
    if _monitor is None:
        raise RuntimeError("Endpoint monitor is not initialized")
    return _monitor


def get_tab_defaults(tab: str) -> dict[str, Any]:
    """Built-in defaults for a tab with the deployment's defaults file applied."""
    return tab_defaults(tab, _defaults.get(tab))


def get_effective_settings(tab: str) -> dict[str, Any]:
    return effective_values(tab, get_settings_store().get_section(tab), get_tab_defaults(tab))


def audit_event(category: str, msg: str, *args: Any) -> None:
    """Write an audit line when Monitoring has audit logging on for this category."""
    monitoring = get_effective_settings("monitoring")
    if monitoring["audit_enabled"] and category in monitoring["audit_events"]:
        audit_logger.info("[%s] " + msg, category, *args)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: load settings, bootstrap Kubernetes, start the endpoint watcher."""
    global _store, _kube, _defaults, _prober, _monitor, _cleanup_tasks, _start_time

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    _defaults = normalize_defaults_overrides(load_defaults_overrides(settings.defaults_path))
    if _defaults:
        logger.info("Loaded default overrides for %s from %s", ", ".join(sorted(_defaults)), settings.defaults_path)
    _store = SettingsStore(settings.settings_store_path)
    logger.info("Settings store: %s", _store.path)

    _kube = KubeContext.unavailable()
    if settings.kube_enabled:
        _kube = await asyncio.to_thread(bootstrap_kube, settings)
    else:
        logger.info("Kubernetes bootstrap disabled")

    _cleanup_tasks = []
    if _kube.is_available and settings.cleanup_on_startup:
        _cleanup_tasks = run_cleanups(_kube)

    _prober = EndpointProber()
    await _prober.start()
    _monitor = EndpointMonitor(store=_store, prober=_prober, settings_provider=get_effective_settings)
    if settings.watch_resources:
        await _monitor.start()
    _start_time = _time.time()
    logger.info("Gateway Console started")

    yield

    if _monitor is not None:
        await _monitor.stop()
        _monitor = None
    for task in _cleanup_tasks:
        task.cancel()
    await asyncio.gather(*_cleanup_tasks, return_exceptions=True)
    _cleanup_tasks = []
    if _prober is not None:
        await _prober.stop()
        _prober = None
    logger.info("Gateway Console stopped")


app = FastAPI(title="API Gateway Console", version="1.0.0", lifespan=lifespan)


# --- Error handling ---


@app.exception_handler(SettingsValidationError)
async def settings_validation_handler(request: Request, exc: SettingsValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid settings", "issues": exc.issues})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    if isinstance(exc, httpx.ConnectError):
        return JSONResponse(status_code=503, content={"error": "Backend unavailable", "detail": str(exc)})
    if isinstance(exc, (httpx.ReadTimeout, httpx.WriteTimeout)):
        return JSONResponse(status_code=504, content={"error": "Backend timeout", "detail": str(exc)})
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --- Health and cluster status ---


@app.get("/health")
async def health():
    return {"status": "healthy", "kube": _kube.is_available, "instance": settings.instance_id}


@app.get("/api/status")
async def cluster_status():
    """Cluster context resolved at startup. The bearer token is never returned."""
    return {"kube": _kube.status_payload()}


# --- Console ---


def _format_uptime(seconds: float) -> str:
    s = int(seconds)
    days, s = divmod(s, 86400)
    hours, s = divmod(s, 3600)
    minutes, s = divmod(s, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{s}s")
    return " ".join(parts)


_CONSOLE_HTML = """\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>API Gateway</title>
    <style>
        :root {
            --background: #0a0a0f;
            --foreground: #e0e0e0;
            --card: #12121a;
            --muted: #1c1c2e;
            --muted-foreground: #8a93a3;
            --accent: #00ff88;
            --accent-tertiary: #00d4ff;
            --border: #2a2a3a;
            --input: #12121a;
            --destructive: #ff3366;
            --warning: #ffb020;
        }

        *, *::before, *::after { box-sizing: border-box; margin: 0; padding: 0; }

        body {
            background: var(--background);
            color: var(--foreground);
            font-family: 'JetBrains Mono', 'Fira Code', Consolas, monospace;
            line-height: 1.6;
            padding: 1.25rem;
        }

        header {
            display: flex;
            justify-content: space-between;
            align-items: baseline;
            border-bottom: 1px solid var(--border);
            padding-bottom: 0.75rem;
            margin-bottom: 1rem;
        }
        header h1 { font-size: 1.4rem; color: var(--accent); letter-spacing: 0.08em; }
        header .meta { color: var(--muted-foreground); font-size: 0.8rem; }
        .status-dot { display: inline-block; width: 8px; height: 8px; border-radius: 50%; margin-right: 0.4rem; }
        .status-dot.healthy { background: var(--accent); }
        .status-dot.degraded { background: var(--warning); }

        .layout { display: grid; grid-template-columns: 240px 1fr; gap: 1rem; }
        nav.tabs { display: flex; flex-direction: column; gap: 0.25rem; }
        nav.tabs button {
            text-align: left;
            background: var(--card);
            color: var(--foreground);
            border: 1px solid var(--border);
            padding: 0.6rem 0.8rem;
            font: inherit;
            cursor: pointer;
        }
        nav.tabs button.active { border-color: var(--accent); color: var(--accent); }

        .panel { background: var(--card); border: 1px solid var(--border); padding: 1rem; }
        .panel h2 { font-size: 1.1rem; margin-bottom: 0.25rem; }
        .panel p.description { color: var(--muted-foreground); margin-bottom: 1rem; font-size: 0.85rem; }
        fieldset { border: 1px solid var(--border); padding: 0.75rem; margin-bottom: 1rem; }
        legend { color: var(--accent-tertiary); padding: 0 0.4rem; }
        .field { display: grid; grid-template-columns: 280px 1fr; gap: 0.75rem; margin-bottom: 0.6rem; }
        .field label { font-weight: 600; }
        .field .help { color: var(--muted-foreground); font-size: 0.75rem; grid-column: 2; }
        input, select, textarea {
            background: var(--input);
            color: var(--foreground);
            border: 1px solid var(--border);
            padding: 0.35rem 0.5rem;
            font: inherit;
            width: 100%;
        }
        input[type=checkbox] { width: auto; }
        textarea { min-height: 8rem; font-family: 'Share Tech Mono', monospace; }
        .multi label { font-weight: 400; margin-right: 1rem; }

        .actions { display: flex; gap: 0.5rem; margin-top: 1rem; }
        .actions button, table button {
            background: var(--muted);
            color: var(--foreground);
            border: 1px solid var(--border);
            padding: 0.45rem 0.9rem;
            font: inherit;
            cursor: pointer;
        }
        .actions button.primary { border-color: var(--accent); color: var(--accent); }
        .actions button.danger, table button.danger { border-color: var(--destructive); color: var(--destructive); }

        #message { margin-top: 1rem; white-space: pre-wrap; font-size: 0.85rem; }
        #message.error { color: var(--destructive); }
        #message.ok { color: var(--accent); }
        #message.warn { color: var(--warning); }

        table { width: 100%; border-collapse: collapse; margin-top: 0.5rem; font-size: 0.85rem; }
        th, td { border-bottom: 1px solid var(--border); padding: 0.35rem 0.5rem; text-align: left; }
        th { color: var(--muted-foreground); font-weight: 600; }
        .extra { margin-top: 1.5rem; }
        .extra h3 { font-size: 1rem; color: var(--accent-tertiary); }
        .inline-form { display: flex; gap: 0.5rem; margin-top: 0.5rem; }
        .inline-form input, .inline-form select { width: auto; flex: 1; }
    </style>
</head>
<body>
    <header>
        <h1>API Gateway</h1>
        <div class="meta">
            <span class="status-dot __KUBE_STATUS_CLASS__"></span>
            cluster: __CLUSTER_ID__ &middot; namespace: __NAMESPACE__ &middot;
            instance: __INSTANCE_ID__ &middot; up __UPTIME__
        </div>
    </header>
    <div class="layout">
        <nav class="tabs" id="tabs" aria-label="API Gateway settings"></nav>
        <main class="panel" id="panel">Loading&hellip;</main>
    </div>

    <script>
        const API = '/api/gateway';
        let schema = [];
        let activeTab = null;

        function esc(value) {
            return String(value === null || value === undefined ? '' : value)
                .replace(/&/g, '&amp;')
                .replace(/</g, '&lt;')
                .replace(/>/g, '&gt;')
                .replace(/"/g, '&quot;')
                .replace(/'/g, '&#039;');
        }

        async function api(method, path, body) {
            const opts = { method, headers: {} };
            if (body !== undefined) {
                opts.headers['Content-Type'] = 'application/json';
                opts.body = JSON.stringify(body);
            }
            const resp = await fetch(API + path, opts);
            const text = await resp.text();
            const data = text ? JSON.parse(text) : null;
            if (!resp.ok) {
                const err = new Error((data && (data.detail || data.error)) || resp.statusText);
                err.data = data;
                throw err;
            }
            return data;
        }

        function showMessage(text, cls) {
            const el = document.getElementById('message');
            if (!el) return;
            el.textContent = text;
            el.className = cls || '';
        }

        function formatIssues(issues) {
            return (issues || []).map(i => i.field + ': ' + i.message).join('; ');
        }

        function renderInput(field, value) {
            const id = 'f_' + field.name;
            if (field.type === 'boolean') {
                return '<input type="checkbox" id="' + id + '"' + (value ? ' checked' : '') + '>';
            }
            if (field.type === 'enum') {
                const blank = value == null ? '<option value="" selected></option>' : '';
                return '<select id="' + id + '">' + blank + field.choices.map(c =>
                    '<option' + (c === value ? ' selected' : '') + '>' + esc(c) + '</option>').join('') + '</select>';
            }
            if (field.type === 'multi') {
                const selected = value || [];
                return '<div class="multi" id="' + id + '">' + field.choices.map(c =>
                    '<label><input type="checkbox" value="' + esc(c) + '"' +
                    (selected.includes(c) ? ' checked' : '') + '> ' + esc(c) + '</label>').join('') + '</div>';
            }
            if (field.type === 'yaml' || field.type === 'json') {
                return '<textarea id="' + id + '" spellcheck="false">' + esc(value) + '</textarea>';
            }
            if (field.type === 'integer') {
                const attrs = ['min', 'max', 'step'].filter(k => field[k] !== undefined)
                    .map(k => ' ' + k + '="' + field[k] + '"').join('');
                return '<input type="number" id="' + id + '" value="' + esc(value) + '"' + attrs + '>';
            }
            const type = field.secret ? 'password' : 'text';
            return '<input type="' + type + '" id="' + id + '" value="' + esc(value) + '">';
        }

        function readInput(field) {
            const el = document.getElementById('f_' + field.name);
            if (field.type === 'boolean') return el.checked;
            if (field.type === 'multi') {
                return Array.from(el.querySelectorAll('input:checked')).map(i => i.value);
            }
            if (field.type === 'integer') return el.value === '' ? null : Number(el.value);
            if (field.type === 'enum') return el.value === '' ? null : el.value;
            return el.value;
        }

        function collectValues(tab) {
            const values = {};
            tab.fields.forEach(f => { values[f.name] = readInput(f); });
            return values;
        }

        function renderTabs() {
            document.getElementById('tabs').innerHTML = schema.map(t =>
                '<button data-tab="' + esc(t.tab) + '"' + (t.tab === activeTab ? ' class="active"' : '') + '>' +
                esc(t.title) + '</button>').join('');
            document.querySelectorAll('nav.tabs button').forEach(btn => {
                btn.addEventListener('click', () => selectTab(btn.dataset.tab));
            });
        }

        async function selectTab(name) {
            activeTab = name;
            renderTabs();
            const tab = schema.find(t => t.tab === name);
            const current = await api('GET', '/settings/' + name);
            const sections = [];
            tab.fields.forEach(f => {
                let section = sections.find(s => s.name === f.section);
                if (!section) {
                    section = { name: f.section, fields: [] };
                    sections.push(section);
                }
                section.fields.push(f);
            });
            let body = '<h2>' + esc(tab.title) + '</h2><p class="description">' + esc(tab.description) + '</p>';
            sections.forEach(s => {
                body += '<fieldset><legend>' + esc(s.name) + '</legend>' + s.fields.map(f =>
                    '<div class="field"><label for="f_' + f.name + '">' + esc(f.label) + '</label>' +
                    renderInput(f, current.values[f.name]) +
                    '<div class="help">' + esc(f.description) + '</div></div>').join('') + '</fieldset>';
            });
            body += '<div class="actions">' +
                '<button class="primary" id="btn-save">Save</button>' +
                '<button id="btn-test">Test Configuration</button>' +
                '<button class="danger" id="btn-reset">Reset to Defaults</button>' +
                extraActions(name) + '</div><div id="message"></div><div class="extra" id="extra"></div>';
            document.getElementById('panel').innerHTML = body;
            document.getElementById('btn-save').addEventListener('click', () => saveTab(tab));
            document.getElementById('btn-test').addEventListener('click', () => testTab(tab));
            document.getElementById('btn-reset').addEventListener('click', () => resetTab(tab));
            bindExtraActions(name);
            await renderExtra(name);
        }

        async function saveTab(tab) {
            try {
                await api('PUT', '/settings/' + tab.tab, { values: collectValues(tab) });
                await selectTab(tab.tab);
                showMessage('Settings saved.', 'ok');
            } catch (e) {
                showMessage('Save failed: ' + (e.data && e.data.issues ? formatIssues(e.data.issues) : e.message), 'error');
            }
        }

        async function testTab(tab) {
            try {
                const report = await api('POST', '/settings/' + tab.tab + '/validate', { values: collectValues(tab) });
                if (!report.valid) {
                    showMessage('Configuration has errors: ' + formatIssues(report.errors), 'error');
                } else if (report.warnings.length) {
                    showMessage('Configuration is valid with warnings: ' + formatIssues(report.warnings), 'warn');
                } else {
                    showMessage('Configuration is valid.', 'ok');
                }
            } catch (e) {
                showMessage('Test failed: ' + e.message, 'error');
            }
        }

        async function resetTab(tab) {
            if (!confirm('Reset ' + tab.title + ' to defaults?')) return;
            await api('POST', '/settings/' + tab.tab + '/reset');
            await selectTab(tab.tab);
            showMessage('Settings reset to defaults.', 'ok');
        }

        function extraActions(name) {
            if (name === 'monitoring') {
                return '<button id="btn-alerts">Test Alerts</button><button id="btn-export">Export Dashboard</button>';
            }
            return '';
        }

        function bindExtraActions(name) {
            if (name !== 'monitoring') return;
            document.getElementById('btn-alerts').addEventListener('click', async () => {
                try {
                    const result = await api('POST', '/monitoring/alerts/test');
                    const lines = result.rules.map(r => r.group + '/' + r.alert + ' (' + (r.severity || 'none') + ')');
                    let text = result.rules.length + ' rules would notify ' + (result.channels.join(', ') || 'no channels');
                    if (lines.length) text += ': ' + lines.join(', ');
                    if (result.warnings.length) text += '. Warnings: ' + formatIssues(result.warnings);
                    showMessage(text, result.warnings.length ? 'warn' : 'ok');
                } catch (e) {
                    showMessage('Alert test failed: ' + e.message, 'error');
                }
            });
            document.getElementById('btn-export').addEventListener('click', () => {
                window.location.href = API + '/monitoring/dashboard/export';
            });
        }

        async function renderExtra(name) {
            const el = document.getElementById('extra');
            if (name === 'authentication') {
                const keys = await api('GET', '/auth/api-keys');
                el.innerHTML = '<h3>API Keys</h3><table><thead><tr><th>Name</th><th>Key</th><th>Permissions</th>' +
                    '<th>Created</th><th></th></tr></thead><tbody>' + keys.map(k =>
                    '<tr><td>' + esc(k.name) + '</td><td>' + esc(k.key) + '</td><td>' + esc(k.permissions) +
                    '</td><td>' + esc(k.created_at) + '</td><td><button class="danger" data-key="' + esc(k.id) +
                    '">Revoke</button></td></tr>').join('') + '</tbody></table>' +
                    '<div class="inline-form"><input id="key-name" placeholder="Key name">' +
                    '<select id="key-perm"><option>user</option><option>admin</option><option>readonly</option></select>' +
                    '<button id="key-create">Generate API Key</button></div>';
                el.querySelectorAll('button[data-key]').forEach(btn => btn.addEventListener('click', async () => {
                    await api('DELETE', '/auth/api-keys/' + btn.dataset.key);
                    await renderExtra(name);
                }));
                document.getElementById('key-create').addEventListener('click', async () => {
                    try {
                        const created = await api('POST', '/auth/api-keys', {
                            name: document.getElementById('key-name').value,
                            permissions: document.getElementById('key-perm').value,
                        });
                        await renderExtra(name);
                        showMessage('New key (shown once): ' + created.key, 'ok');
                    } catch (e) {
                        showMessage('Could not create key: ' + e.message, 'error');
                    }
                });
            } else if (name === 'models') {
                const endpoints = await api('GET', '/models/endpoints');
                el.innerHTML = '<h3>Model Endpoints</h3><table><thead><tr><th>Name</th><th>Version</th>' +
                    '<th>Endpoint</th><th>Status</th><th>Instances</th><th>Last Updated</th><th></th></tr></thead><tbody>' +
                    endpoints.map(m => '<tr><td>' + esc(m.name) + '</td><td>' + esc(m.version) + '</td><td>' +
                    esc(m.endpoint) + '</td><td>' + esc(m.status) + '</td><td>' + esc(m.instances) + '</td><td>' +
                    esc(m.last_updated) + '</td><td><button data-probe="' + esc(m.id) + '">Probe</button> ' +
                    '<button class="danger" data-remove="' + esc(m.id) + '">Remove</button></td></tr>').join('') +
                    '</tbody></table><div class="inline-form"><input id="model-name" placeholder="Model name">' +
                    '<input id="model-version" placeholder="Version" value="latest">' +
                    '<input id="model-endpoint" placeholder="http://model-service:8080">' +
                    '<button id="model-add">Register Model</button><button id="model-probe-all">Probe All</button></div>';
                el.querySelectorAll('button[data-probe]').forEach(btn => btn.addEventListener('click', async () => {
                    await api('POST', '/models/endpoints/' + btn.dataset.probe + '/probe');
                    await renderExtra(name);
                }));
                el.querySelectorAll('button[data-remove]').forEach(btn => btn.addEventListener('click', async () => {
                    await api('DELETE', '/models/endpoints/' + btn.dataset.remove);
                    await renderExtra(name);
                }));
                document.getElementById('model-probe-all').addEventListener('click', async () => {
                    await api('POST', '/models/endpoints/probe');
                    await renderExtra(name);
                });
                document.getElementById('model-add').addEventListener('click', async () => {
                    try {
                        await api('POST', '/models/endpoints', {
                            name: document.getElementById('model-name').value,
                            version: document.getElementById('model-version').value,
                            endpoint: document.getElementById('model-endpoint').value,
                        });
                        await renderExtra(name);
                    } catch (e) {
                        showMessage('Could not register model: ' + e.message, 'error');
                    }
                });
            } else if (name === 'scaling') {
                try {
                    const s = await api('GET', '/scaling/status');
                    el.innerHTML = '<h3>Current Deployment</h3><table><tbody>' +
                        '<tr><th>Deployment</th><td>' + esc(s.namespace + '/' + s.deployment) + '</td></tr>' +
                        '<tr><th>Replicas</th><td>' + esc(s.ready_replicas + ' ready / ' + s.replicas + ' desired') +
                        '</td></tr><tr><th>Bounds</th><td>' + esc(s.min_replicas + ' - ' + s.max_replicas) +
                        '</td></tr></tbody></table>';
                } catch (e) {
                    el.innerHTML = '<h3>Current Deployment</h3><p class="description">' + esc(e.message) + '</p>';
                }
            } else {
                el.innerHTML = '';
            }
        }

        (async () => {
            try {
                schema = (await api('GET', '/schema')).tabs;
                await selectTab(schema[0].tab);
            } catch (e) {
                document.getElementById('panel').textContent = 'Failed to load settings: ' + e.message;
            }
        })();
    </script>
</body>
</html>"""


def _build_console_html() -> str:
    uptime_secs = _time.time() - _start_time if _start_time else 0
    return (
        _CONSOLE_HTML
        .replace("__KUBE_STATUS_CLASS__", "healthy" if _kube.is_available else "degraded")
        .replace("__CLUSTER_ID__", html.escape(_kube.cluster_id or "n/a"))
        .replace("__NAMESPACE__", html.escape(_kube.namespace or "n/a"))
        .replace("__INSTANCE_ID__", html.escape(settings.instance_id))
        .replace("__UPTIME__", _format_uptime(uptime_secs))
    )


@app.get("/api-gateway", include_in_schema=False, response_class=HTMLResponse)
async def api_gateway_console():
    """Self-contained API Gateway settings console."""
    return HTMLResponse(content=_build_console_html())


@app.get("/dashboard", include_in_schema=False, response_class=HTMLResponse)
async def dashboard():
    return HTMLResponse(content=_build_console_html())


@app.get("/", include_in_schema=False, response_class=HTMLResponse)
async def root_dashboard():
    """Serve the console directly on the base URL."""
    return HTMLResponse(content=_build_console_html())


# --- Mount routers ---

from .router_settings import router as settings_router  # noqa: E402
from .router_auth import router as auth_router  # noqa: E402
from .router_models import router as models_router  # noqa: E402
from .router_monitoring import router as monitoring_router  # noqa: E402
from .router_scaling import router as scaling_router  # noqa: E402

app.include_router(settings_router)
app.include_router(auth_router)
app.include_router(models_router)
app.include_router(monitoring_router)
app.include_router(scaling_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
