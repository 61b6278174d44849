import json
import threading
import urllib.error
import urllib.request

import pytest

from xiaoai_wol.config import Config, MQTTConfig
from xiaoai_wol.mqtt import MQTTManager
from xiaoai_wol.server import DebugState, create_server, main, make_handler, mqtt_status
from xiaoai_wol.skill import GREETING_TEXT, GOODBYE_TEXT, WAKING_TEXT

MAC = "02-00-00-00-00-01"
AUTH = "MIAI-HmacSHA256-V1 secret::"


def _config():
    return Config(
        xiaoai_key="secret",
        mac=MAC,
        port=0,
        mqtt=MQTTConfig(client_id="client", server="broker.example.com", port=1883, topic="pc"),
    )


_OPENER = urllib.request.build_opener(urllib.request.ProxyHandler({}))


def fetch(url, body=None, headers=None):
    request = urllib.request.Request(url, data=body, headers=headers or {})
    try:
        with _OPENER.open(request, timeout=5) as response:
            return response.status, response.headers.get("Content-Type", ""), response.read().decode()
    except urllib.error.HTTPError as err:
        with err:
            return err.code, err.headers.get("Content-Type", ""), err.read().decode()


@pytest.fixture
def serve():
    servers = []

    def start(mqtt_manager=None, state=None):
        woken = []

        def wake(mac):
            woken.append(mac)
            return f"woke {mac}\n"

        server = create_server(_config(), mqtt_manager, state, wake)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return f"http://127.0.0.1:{server.server_address[1]}", woken

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


def _skill_body(request):
    return json.dumps({"request": request}).encode()


def test_root_serves_panel(serve):
    base, _ = serve()
    status, content_type, body = fetch(base + "/")
    assert status == 200
    assert content_type.startswith("text/html")
    assert "设备管理面板" in body


def test_unknown_path_falls_back_to_panel(serve):
    base, _ = serve()
    status, _, body = fetch(base + "/somewhere/else?x=1")
    assert status == 200
    assert "设备管理面板" in body


def test_wol_wakes_configured_mac(serve):
    base, woken = serve()
    status, _, body = fetch(base + "/wol")
    assert status == 200
    assert woken == [MAC]
    assert body == f"woke {MAC}\n"


def test_toggle_debug_flips_and_reports(serve):
    base, _ = serve()
    assert json.loads(fetch(base + "/toggle-debug")[2]) == {"debug": True}
    assert json.loads(fetch(base + "/get-last-request")[2]) == {"debug": True, "data": ""}
    assert json.loads(fetch(base + "/toggle-debug")[2]) == {"debug": False}


def test_debug_mode_captures_xiaoai_request(serve):
    state = DebugState()
    base, woken = serve(state=state)
    state.toggle()
    status, _, body = fetch(base + "/xiaoai", body=b'{"a":1}', headers={"Content-Type": "application/json"})
    assert status == 200
    assert json.loads(body) == {"status": "ok", "debug_mode": True}
    result = json.loads(fetch(base + "/get-last-request")[2])
    assert result["debug"] is True
    assert "From: 127.0.0.1:" in result["data"]
    assert result["data"].endswith('{\n  "a": 1\n}')
    assert woken == []


def test_turning_debug_off_clears_capture(serve):
    state = DebugState()
    base, _ = serve(state=state)
    fetch(base + "/toggle-debug")
    fetch(base + "/xiaoai", body=b"hello")
    assert "hello" in json.loads(fetch(base + "/get-last-request")[2])["data"]
    fetch(base + "/toggle-debug")
    assert json.loads(fetch(base + "/get-last-request")[2]) == {"debug": False, "data": ""}


def test_xiaoai_rejects_wrong_key(serve):
    base, woken = serve()
    status, _, _ = fetch(
        base + "/xiaoai",
        body=_skill_body({"type": 1, "intent": {"query": "打开我的电脑"}}),
        headers={"Authorization": "MIAI-HmacSHA256-V1 token::"},
    )
    assert status == 404
    assert woken == []


def test_xiaoai_bad_json_is_bad_request(serve):
    base, _ = serve()
    status, _, body = fetch(base + "/xiaoai", body=b"{not json", headers={"Authorization": AUTH})
    assert status == 400
    assert body == "无效请求\n"


def test_xiaoai_wake_query(serve):
    base, woken = serve()
    status, content_type, body = fetch(
        base + "/xiaoai",
        body=_skill_body({"type": 1, "intent": {"query": "打开我的电脑"}}),
        headers={"Authorization": AUTH},
    )
    assert status == 200
    assert content_type == "application/json"
    reply = json.loads(body)
    assert woken == [MAC]
    assert reply["is_session_end"] is True
    assert reply["response"]["open_mic"] is False
    assert reply["response"]["to_speak"]["text"] == WAKING_TEXT


def test_xiaoai_launch_and_end(serve):
    base, woken = serve()
    launch = json.loads(fetch(base + "/xiaoai", body=_skill_body({"type": 0}), headers={"Authorization": AUTH})[2])
    end = json.loads(fetch(base + "/xiaoai", body=_skill_body({"type": 2}), headers={"Authorization": AUTH})[2])
    assert launch["response"]["to_display"]["text"] == GREETING_TEXT
    assert launch["is_session_end"] is False
    assert end["response"]["to_speak"]["text"] == GOODBYE_TEXT
    assert end["is_session_end"] is True
    assert woken == []


def test_mqtt_status_endpoint_without_manager(serve):
    base, _ = serve()
    result = json.loads(fetch(base + "/mqtt-status")[2])
    assert result["enabled"] is False
    assert result["message"] == "MQTT功能未启用"


def test_mqtt_status_with_manager():
    manager = MQTTManager(_config().mqtt, MAC, client_factory=lambda client_id: None)
    assert mqtt_status(manager) == {
        "enabled": True,
        "connected": False,
        "status": "off",
        "topic": "pc",
        "server": "broker.example.com:1883",
    }


def test_mqtt_status_endpoint_with_manager(serve):
    manager = MQTTManager(_config().mqtt, MAC, client_factory=lambda client_id: None)
    base, _ = serve(mqtt_manager=manager)
    result = json.loads(fetch(base + "/mqtt-status")[2])
    assert result["enabled"] is True
    assert result["topic"] == "pc"


def test_top_reports_resources(serve):
    base, _ = serve()
    status, content_type, body = fetch(base + "/top")
    assert status == 200
    assert content_type.startswith("text/plain")
    assert body.startswith("=== 系统资源信息 ===\n")


def test_debug_state_toggle_and_record():
    state = DebugState()
    assert state.snapshot() == (False, "")
    assert state.toggle() is True
    state.record("captured")
    assert state.snapshot() == (True, "captured")
    assert state.toggle() is False
    assert state.snapshot() == (False, "")


def test_make_handler_binds_settings():
    config = _config()
    state = DebugState()
    handler = make_handler(config, None, state, lambda mac: mac.lower())
    assert handler.config is config
    assert handler.state is state
    assert handler.waker("AB") == "ab"


def test_main_missing_config(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "missing.json")]) == 1
    assert "配置加载失败" in capsys.readouterr().out


def test_main_invalid_config(tmp_path, capsys):
    path = tmp_path / "xiaoai.json"
    path.write_text('{"port": 70000}', encoding="utf-8")
    assert main(["--config", str(path)]) == 1
    assert "port 必须在 1-65535 范围内" in capsys.readouterr().out