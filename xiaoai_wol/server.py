"""HTTP control panel, skill endpoint and the service entry point."""

from __future__ import annotations

import argparse
import json
import logging
import subprocess
import threading
import time
from collections.abc import Callable
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import urlsplit

from .config import Config, ConfigError, load_config
from .mqtt import MQTTError, MQTTManager
from .skill import SkillRequest, format_debug_record, is_authorized, respond
from .sysinfo import system_info
from .wol import is_private_ip, wake_on_lan

log = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "xiaoai.json"
RESTART_DELAY = 1.0

_TEXT = "text/plain; charset=utf-8"
_JSON = "application/json"
_HTML = "text/html; charset=utf-8"

_PANEL_HTML = """<!DOCTYPE html>
<html lang="zh">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>设备管理</title>
<style>
body{font-family:system-ui,"Microsoft YaHei",sans-serif;margin:20px;background:#f8f9fa;color:#333}
main{max-width:800px;margin:auto;padding:20px;background:#fff;border-radius:8px;box-shadow:0 2px 4px rgba(0,0,0,.1)}
h2{color:#007bff}
button{padding:10px 15px;margin:5px;font-size:14px;cursor:pointer;border:1px solid #ccc;border-radius:4px;background:#f0f0f0}
button:hover{background:#e0e0e0}
.panel{margin:20px 5px;padding:12px;background:#f8f9fa;border-radius:8px}
#mqtt{border-left:4px solid #007bff}
#out{margin-top:20px;padding:15px;background:#e9ecef;white-space:pre-wrap;word-wrap:break-word;border-radius:4px;min-height:50px}
.dot{display:inline-block;width:12px;height:12px;border-radius:50%;margin-right:8px;background:#6c757d}
.dot.up{background:#28a745}
.dot.down{background:#dc3545}
#details{margin-top:10px;font-size:14px;color:#666}
</style>
</head>
<body>
<main>
<h2>设备管理面板</h2>
<button id="btn-wol">唤醒电脑</button>
<button id="btn-restart">重启设备</button>
<button id="btn-top">系统信息</button>
<div class="panel"><label><input type="checkbox" id="debug"> 小爱API调试</label></div>
<div class="panel" id="mqtt">
<span class="dot" id="dot"></span><strong>MQTT状态：</strong><span id="state">检查中...</span>
<div id="details" hidden>
<div>服务器: <span id="server">-</span></div>
<div>主　题: <span id="topic">-</span></div>
<div>状　态: <span id="status">-</span></div>
</div>
</div>
<div id="out"></div>
</main>
<script>
const $ = id => document.getElementById(id);
const out = $('out');
const debugBox = $('debug');
let debugTimer = null;
let mqttTimer = null;

const show = text => { out.textContent = text; };
const fail = e => show('错误: ' + e);
const reset = () => { if (!debugBox.checked) show(''); };
const getJSON = path => fetch(path).then(r => r.json());

function fetchText(path) {
  reset();
  fetch(path).then(r => r.text()).then(show).catch(fail);
}

$('btn-wol').onclick = () => fetchText('/wol');
$('btn-top').onclick = () => fetchText('/top');
$('btn-restart').onclick = () => {
  if (!confirm('确定要重启吗？')) return;
  reset();
  fetch('/restart').then(() => show('重启命令已发送')).catch(fail);
};

function pollDebug() {
  if (!debugBox.checked) { stopDebug(); return; }
  getJSON('/get-last-request').then(res => {
    if (!res.debug) { debugBox.checked = false; stopDebug(); return; }
    if (res.data && out.textContent !== res.data) show(res.data);
  }).catch(e => { console.error(e); stopDebug(); });
}

function startDebug() {
  if (debugTimer) return;
  show('调试模式已开启，等待 /xiaoai 请求...');
  pollDebug();
  debugTimer = setInterval(pollDebug, 2000);
}

function stopDebug() {
  if (!debugTimer) return;
  clearInterval(debugTimer);
  debugTimer = null;
  show('调试模式已关闭。');
}

debugBox.onchange = () => getJSON('/toggle-debug').then(data => {
  debugBox.checked = data.debug;
  data.debug ? startDebug() : stopDebug();
});

function renderMQTT(data) {
  const dot = $('dot');
  const details = $('details');
  if (!data.enabled) {
    dot.className = 'dot';
    $('state').textContent = '未启用';
    details.hidden = true;
    return;
  }
  dot.className = data.connected ? 'dot up' : 'dot down';
  $('state').textContent = data.connected ? '已连接' : '连接断开';
  details.hidden = false;
  $('server').textContent = data.server || '-';
  $('topic').textContent = data.topic || '-';
  $('status').textContent = data.status || 'off';
}

function pollMQTT() {
  getJSON('/mqtt-status').then(renderMQTT).catch(e => {
    console.error(e);
    $('dot').className = 'dot';
    $('state').textContent = '状态获取失败';
  });
}

window.onload = () => {
  getJSON('/get-last-request').then(res => {
    debugBox.checked = res.debug;
    if (res.debug) startDebug();
  });
  if (!mqttTimer) {
    pollMQTT();
    mqttTimer = setInterval(pollMQTT, 5000);
  }
};
</script>
</body>
</html>"""


class DebugState:
    """Thread-safe debug switch and the last request captured while it is on."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._debug = False
        self._last = ""

    def toggle(self) -> bool:
        """Flip the switch; turning it off forgets the captured request."""
        with self._lock:
            self._debug = not self._debug
            if not self._debug:
                self._last = ""
            return self._debug

    def record(self, text: str) -> None:
        with self._lock:
            self._last = text

    def snapshot(self) -> tuple[bool, str]:
        """Return (debug enabled, last captured request)."""
        with self._lock:
            return self._debug, self._last


def mqtt_status(mqtt_manager: MQTTManager | None) -> dict[str, Any]:
    """Describe the MQTT link for the status endpoint."""
    if mqtt_manager is None:
        return {
            "enabled": False,
            "connected": False,
            "status": "off",
            "topic": "",
            "message": "MQTT功能未启用",
        }
    info = mqtt_manager.connection_info()
    return {
        "enabled": True,
        "connected": info["connected"],
        "status": info["status"],
        "topic": info["topic"],
        "server": info["server"],
    }


def reboot_system() -> None:
    """Reboot the machine through sysrq, falling back to the reboot command."""
    try:
        with open("/proc/sys/kernel/sysrq", "w", encoding="ascii") as handle:
            handle.write("1")
    except OSError:
        try:
            subprocess.run(["reboot"], check=False)
        except OSError as exc:
            log.error("重启失败: %s", exc)
        return
    try:
        with open("/proc/sysrq-trigger", "w", encoding="ascii") as handle:
            handle.write("b")
    except OSError as exc:
        log.error("重启失败: %s", exc)


def _delayed_reboot() -> None:
    time.sleep(RESTART_DELAY)
    reboot_system()


def _to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


class XiaoaiHandler(BaseHTTPRequestHandler):
    """Serves the control panel, its API and the skill endpoint."""

    server_version = "xiaoai-wol"
    protocol_version = "HTTP/1.1"

    config: Config = Config()
    mqtt_manager: MQTTManager | None = None
    state: DebugState = DebugState()
    waker: Callable[[str], str] = staticmethod(wake_on_lan)

    @property
    def remote_addr(self) -> str:
        host, port = self.client_address[:2]
        return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"

    def log_message(self, format: str, *args: Any) -> None:
        log.debug("%s - %s", self.address_string(), format % args)

    # -- plumbing ----------------------------------------------------------

    def _send(
        self,
        status: int,
        body: str | bytes = b"",
        content_type: str | None = None,
        extra: dict[str, str] | None = None,
    ) -> None:
        data = body.encode("utf-8") if isinstance(body, str) else body
        self.send_response(status)
        if content_type:
            self.send_header("Content-Type", content_type)
        for name, value in (extra or {}).items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        if data:
            self.wfile.write(data)

    def _read_body(self) -> bytes:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = 0
        return self.rfile.read(length) if length > 0 else b""

    def _local_only(self) -> bool:
        if is_private_ip(self.remote_addr):
            return True
        self._send(HTTPStatus.NOT_FOUND)
        return False

    def _dispatch(self) -> None:
        routes = {
            "/top": self._top,
            "/restart": self._restart,
            "/toggle-debug": self._toggle_debug,
            "/get-last-request": self._last_request,
            "/wol": self._wol,
            "/xiaoai": self._xiaoai,
            "/mqtt-status": self._mqtt_status,
        }
        routes.get(urlsplit(self.path).path, self._root)()

    do_GET = do_POST = do_PUT = do_DELETE = do_PATCH = do_OPTIONS = _dispatch

    # -- routes ------------------------------------------------------------

    def _root(self) -> None:
        if self._local_only():
            self._send(HTTPStatus.OK, _PANEL_HTML, _HTML)

    def _wol(self) -> None:
        if self._local_only():
            self._send(HTTPStatus.OK, self.waker(self.config.mac), _TEXT)

    def _top(self) -> None:
        if self._local_only():
            self._send(HTTPStatus.OK, system_info(), _TEXT)

    def _restart(self) -> None:
        if not self._local_only():
            return
        threading.Thread(target=_delayed_reboot, name="reboot", daemon=True).start()
        self._send(HTTPStatus.OK, "重启命令已发送，系统将在1秒后重启", _TEXT)

    def _toggle_debug(self) -> None:
        if self._local_only():
            enabled = self.state.toggle()
            self._send(HTTPStatus.OK, f'{{"debug": {"true" if enabled else "false"}}}', _JSON)

    def _last_request(self) -> None:
        if self._local_only():
            debug, data = self.state.snapshot()
            self._send(HTTPStatus.OK, _to_json({"debug": debug, "data": data}) + "\n", _JSON)

    def _mqtt_status(self) -> None:
        if self._local_only():
            self._send(HTTPStatus.OK, _to_json(mqtt_status(self.mqtt_manager)) + "\n", _JSON)

    def _xiaoai(self) -> None:
        body = self._read_body()
        debug, _ = self.state.snapshot()
        if debug:
            self.state.record(format_debug_record(self.remote_addr, self.headers.items(), body))
            self._send(HTTPStatus.OK, '{"status":"ok", "debug_mode": true}\n', _JSON)
            return

        if not is_authorized(self.headers.get("Authorization"), self.config.xiaoai_key):
            self._send(HTTPStatus.NOT_FOUND)
            return

        try:
            request = SkillRequest.from_dict(json.loads(body.decode("utf-8")))
        except (UnicodeDecodeError, ValueError):
            self._send(
                HTTPStatus.BAD_REQUEST,
                "无效请求\n",
                _TEXT,
                {"X-Content-Type-Options": "nosniff"},
            )
            return

        reply = respond(request, lambda: self.waker(self.config.mac))
        self._send(HTTPStatus.OK, json.dumps(reply.to_dict(), ensure_ascii=False) + "\n", _JSON)


def make_handler(
    config: Config,
    mqtt_manager: MQTTManager | None = None,
    state: DebugState | None = None,
    wake: Callable[[str], str] | None = None,
) -> type[XiaoaiHandler]:
    """Return a handler class bound to this service's configuration and state."""
    return type(
        "BoundXiaoaiHandler",
        (XiaoaiHandler,),
        {
            "config": config,
            "mqtt_manager": mqtt_manager,
            "state": state if state is not None else DebugState(),
            "waker": staticmethod(wake or wake_on_lan),
        },
    )


def create_server(
    config: Config,
    mqtt_manager: MQTTManager | None = None,
    state: DebugState | None = None,
    wake: Callable[[str], str] | None = None,
) -> ThreadingHTTPServer:
    """Bind a threaded HTTP server on the configured port of every interface."""
    server = ThreadingHTTPServer(("", config.port), make_handler(config, mqtt_manager, state, wake))
    server.daemon_threads = True
    return server


def _connect_in_background(manager: MQTTManager) -> None:
    try:
        manager.connect()
    except MQTTError as exc:
        log.error("MQTT连接失败: %s", exc)


def main(argv: list[str] | None = None) -> int:
    """Run the service until interrupted; return the process exit status."""
    parser = argparse.ArgumentParser(prog="xiaoai-wol", description="小爱唤醒电脑服务")
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_FILE, help="配置文件路径")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"配置加载失败: {exc}")
        return 1

    manager: MQTTManager | None = None
    if config.mqtt.server and config.mqtt.topic:
        manager = MQTTManager(config.mqtt, config.mac)
        threading.Thread(
            target=_connect_in_background, args=(manager,), name="mqtt-connect", daemon=True
        ).start()
        log.info(
            "MQTT管理器已初始化，服务器: %s:%d, 主题: %s",
            config.mqtt.server,
            config.mqtt.port,
            config.mqtt.topic,
        )
    else:
        log.info("MQTT配置不完整，跳过MQTT功能初始化")

    print(f"小爱接口服务启动，端口: {config.port}")
    if manager is not None:
        print(f"MQTT功能已启用，主题: {config.mqtt.topic}")
    else:
        print("MQTT功能未启用")

    try:
        server = create_server(config, manager)
    except OSError as exc:
        print(f"HTTP服务器启动失败: {exc}")
        if manager is not None:
            manager.disconnect()
        return 1

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
        if manager is not None:
            manager.disconnect()
    return 0