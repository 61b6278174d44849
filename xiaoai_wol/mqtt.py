"""MQTT client manager that turns "on" messages into wake-on-LAN packets."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from typing import Any

import paho.mqtt.client as paho

from .config import MQTTConfig
from .wol import wake_on_lan

log = logging.getLogger(__name__)

QOS = 1
KEEPALIVE = 60
MAX_BACKOFF = 60.0
RECONNECT_COOLDOWN = 30.0
_STOP = object()


class MQTTError(RuntimeError):
    """Raised when connecting, subscribing or publishing fails."""


def _paho_client(client_id: str) -> Any:
    return paho.Client(
        paho.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        clean_session=True,
        reconnect_on_failure=False,
    )


def _failed(code: Any) -> bool:
    is_failure = getattr(code, "is_failure", None)
    if is_failure is not None:
        return bool(is_failure)
    return code != 0


def _result_code(result: Any) -> Any:
    return result[0]


class MQTTManager:
    """Keeps one MQTT connection alive and reacts to messages on one topic."""

    off_delay = 5.0
    connect_timeout = 10.0

    def __init__(
        self,
        config: MQTTConfig,
        mac_addr: str,
        client_factory: Callable[[str], Any] | None = None,
        max_retries: int = 3,
        retry_interval: float = 5.0,
    ) -> None:
        self._config = config
        self._mac_addr = mac_addr
        self._client_factory = client_factory or _paho_client
        self.max_retries = max_retries
        self.retry_interval = retry_interval
        self.waker: Callable[[str], str] = wake_on_lan

        self._lock = threading.RLock()
        self._client: Any = None
        self._status = "off"
        self._connected = False
        self._reconnecting = False
        self._closing = False
        self._connack = threading.Event()
        self._connect_error: str | None = None
        self._signals: queue.Queue[object] = queue.Queue(maxsize=1)
        self._stop = threading.Event()
        self._monitor: threading.Thread | None = None
        self._cooldown: threading.Timer | None = None

    # -- retries -----------------------------------------------------------

    def _retry(self, action: Callable[[], None], label: str) -> None:
        last: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                action()
            except MQTTError as exc:
                last = exc
                log.warning("%s失败 (尝试 %d/%d): %s", label, attempt, self.max_retries, exc)
                if attempt < self.max_retries:
                    self._stop.wait(self.retry_interval)
                continue
            log.info("%s成功 (尝试 %d/%d)", label, attempt, self.max_retries)
            return
        raise MQTTError(f"{label}失败，已重试 {self.max_retries} 次，最后错误: {last}")

    # -- connection --------------------------------------------------------

    def connect(self) -> None:
        """Connect with retries and start watching for lost connections."""
        if self._monitor is None or not self._monitor.is_alive():
            self._stop = threading.Event()
            self._signals = queue.Queue(maxsize=1)
        with self._lock:
            self._closing = False
        self._retry(self._do_connect, "MQTT连接")
        if self._monitor is None or not self._monitor.is_alive():
            self._monitor = threading.Thread(
                target=self._monitor_reconnects,
                args=(self._signals, self._stop),
                name="mqtt-reconnect",
                daemon=True,
            )
            self._monitor.start()

    def _do_connect(self) -> None:
        old = self._client
        if old is not None:
            old.loop_stop()

        client = self._client_factory(self._config.client_id)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        with self._lock:
            self._client = client
        self._connack.clear()
        self._connect_error = None

        try:
            client.connect(self._config.server, self._config.port, keepalive=KEEPALIVE)
        except (OSError, ValueError) as exc:
            raise MQTTError(f"MQTT连接失败: {exc}") from exc
        client.loop_start()

        if not self._connack.wait(self.connect_timeout):
            client.loop_stop()
            raise MQTTError("MQTT连接失败: 连接超时")
        if self._connect_error is not None:
            client.loop_stop()
            raise MQTTError(f"MQTT连接失败: {self._connect_error}")

    def _on_connect(self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        if client is not self._client:
            return
        if _failed(reason_code):
            self._connect_error = str(reason_code)
            self._connack.set()
            return
        log.info("MQTT连接成功，服务器: %s:%d", self._config.server, self._config.port)
        with self._lock:
            self._connected = True
            self._reconnecting = False
        self._connack.set()
        try:
            self._retry(self.subscribe, "订阅")
        except MQTTError as exc:
            log.error("自动订阅失败: %s", exc)

    def _on_disconnect(self, client: Any, userdata: Any, *args: Any) -> None:
        if client is not self._client:
            return
        with self._lock:
            self._connected = False
            closing = self._closing
        if closing:
            return
        log.warning("MQTT连接丢失")
        self.trigger_reconnect()

    def _on_message(self, client: Any, userdata: Any, message: Any) -> None:
        self.handle_message(message.payload, message.topic)

    # -- topic operations --------------------------------------------------

    def _require_client(self) -> Any:
        client = self._client
        if client is None or not client.is_connected():
            raise MQTTError("MQTT客户端未连接")
        return client

    def subscribe(self) -> None:
        """Subscribe to the configured topic at QoS 1."""
        client = self._require_client()
        code = _result_code(client.subscribe(self._config.topic, qos=QOS))
        if code != 0:
            raise MQTTError(f"订阅主题失败: 错误码 {int(code)}")
        log.info("成功订阅MQTT主题: %s (QoS: %d)", self._config.topic, QOS)

    def publish(self, message: str) -> None:
        """Publish ``message`` to the topic with retries and record it as the status."""
        self._retry(lambda: self._do_publish(message), "发布消息")

    def _do_publish(self, message: str) -> None:
        client = self._require_client()
        info = client.publish(self._config.topic, message, qos=QOS)
        code = _result_code(info)
        if code != 0:
            raise MQTTError(f"发布消息失败: 错误码 {int(code)}")
        wait = getattr(info, "wait_for_publish", None)
        if wait is not None:
            try:
                wait(timeout=self.connect_timeout)
            except (RuntimeError, ValueError) as exc:
                raise MQTTError(f"发布消息失败: {exc}") from exc
        log.info("成功发布MQTT消息: 主题=%s, 消息=%s", self._config.topic, message)
        self._set_status(message)

    # -- state -------------------------------------------------------------

    def status(self) -> str:
        """Return the last status seen on the topic ("on" or "off")."""
        with self._lock:
            return self._status

    def _set_status(self, status: str) -> None:
        with self._lock:
            self._status = status

    def is_connected(self) -> bool:
        with self._lock:
            client = self._client
            return self._connected and client is not None and client.is_connected()

    def connection_info(self) -> dict[str, Any]:
        """Describe the connection for the status endpoint."""
        with self._lock:
            return {
                "connected": self.is_connected(),
                "status": self._status,
                "topic": self._config.topic,
                "server": f"{self._config.server}:{self._config.port}",
                "client_id": self._config.client_id,
            }

    # -- messages ----------------------------------------------------------

    def handle_message(self, payload: bytes | str, topic: str | None = None) -> threading.Thread | None:
        """Record a received message; on "on" start waking the machine.

        Returns the worker thread started for a wake command, otherwise None.
        """
        if isinstance(payload, (bytes, bytearray)):
            message = bytes(payload).decode("utf-8", errors="replace")
        else:
            message = str(payload)
        log.info("收到MQTT消息: 主题=%s, 消息=%s", topic, message)
        self._set_status(message)
        if message != "on":
            return None
        log.info("收到唤醒命令，正在执行唤醒操作...")
        worker = threading.Thread(target=self._wake_then_reset, name="mqtt-wake", daemon=True)
        worker.start()
        return worker

    def _wake_then_reset(self) -> None:
        result = self.waker(self._mac_addr)
        log.info("\n%s", result)
        time.sleep(self.off_delay)
        try:
            self.publish("off")
        except MQTTError as exc:
            log.error("发送off消息失败: %s", exc)
        else:
            log.info("唤醒完成，已自动发送off消息")

    # -- reconnection ------------------------------------------------------

    def trigger_reconnect(self) -> bool:
        """Ask the monitor to reconnect; False if a reconnect is already under way."""
        with self._lock:
            if self._reconnecting:
                return False
            self._reconnecting = True
        try:
            self._signals.put_nowait(True)
        except queue.Full:
            log.info("重连信号已在队列中，跳过")
        else:
            log.info("触发MQTT重连")
        return True

    def _monitor_reconnects(self, signals: queue.Queue[object], stop: threading.Event) -> None:
        log.info("启动MQTT重连监控")
        while True:
            item = signals.get()
            if item is _STOP or stop.is_set():
                log.info("停止MQTT重连监控")
                return
            log.info("开始MQTT重连...")
            self._handle_reconnect()

    def _handle_reconnect(self) -> None:
        backoff = self.retry_interval
        for attempt in range(1, self.max_retries + 1):
            if self._stop.is_set():
                return
            log.info("MQTT重连尝试 %d/%d", attempt, self.max_retries)
            client = self._client
            if client is not None and client.is_connected():
                client.disconnect()
            try:
                self._do_connect()
            except MQTTError as exc:
                log.warning("MQTT重连失败 (尝试 %d/%d): %s", attempt, self.max_retries, exc)
                if attempt < self.max_retries:
                    if self._stop.wait(backoff):
                        return
                    backoff = min(backoff * 2, MAX_BACKOFF)
                continue
            log.info("MQTT重连成功 (尝试 %d/%d)", attempt, self.max_retries)
            return

        log.error("MQTT重连失败，已重试 %d 次", self.max_retries)
        with self._lock:
            self._reconnecting = False
        self._cooldown = threading.Timer(RECONNECT_COOLDOWN, self._after_cooldown)
        self._cooldown.daemon = True
        self._cooldown.start()

    def _after_cooldown(self) -> None:
        if self._stop.is_set():
            return
        log.info("重连冷却期结束，准备再次尝试重连")
        self.trigger_reconnect()

    def disconnect(self) -> None:
        """Stop reconnecting, unsubscribe and close the connection."""
        self._stop.set()
        with self._lock:
            self._closing = True
        try:
            self._signals.put_nowait(_STOP)
        except queue.Full:
            pass
        if self._cooldown is not None:
            self._cooldown.cancel()

        client = self._client
        if client is not None and client.is_connected():
            if _result_code(client.unsubscribe(self._config.topic)) != 0:
                log.warning("取消订阅失败: %s", self._config.topic)
            client.disconnect()
            log.info("MQTT连接已断开")
        if client is not None:
            client.loop_stop()

        with self._lock:
            self._connected = False
            self._reconnecting = False