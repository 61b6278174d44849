# xiaoai-wol

A small service that wakes a computer on your LAN with a Wake-on-LAN
magic packet. It can be triggered three ways:

- by a Xiaoai voice skill (the query "打开我的电脑") posting to `/xiaoai`;
- by an MQTT message `on` arriving on a configured topic;
- by a button on a web panel served to clients on the private network.

It is meant for a Linux host: the resource report reads `/proc/stat` and
`/proc/meminfo`, and the restart endpoint uses the kernel's sysrq interface
or the `reboot` command.

## Installation

```
pip install xiaoai-wol
```

## Configuration

By default the service reads `xiaoai.json` from the directory it is started
in; `-c/--config PATH` names another file. The file must exist and hold JSON.
Every field is optional; missing, empty or zero ones take the defaults below.

```json
{
  "xiaoai_key": "placeholder",
  "mac": "00-00-5E-00-53-01",
  "port": 3030,
  "mqtt": {
    "client_id": "wol-bridge",
    "server": "mqtt.example.com",
    "port": 9501,
    "topic": "title"
  }
}
```

| Field            | Default             | Meaning                                            |
|------------------|---------------------|----------------------------------------------------|
| `xiaoai_key`     | `xiaoaikey`         | Key expected in the skill's `Authorization` header |
| `mac`            | `00-00-00-FF-FF-FF` | MAC address of the machine to wake (`:` or `-`)    |
| `port`           | `3030`              | HTTP port to listen on (1–65535)                   |
| `mqtt.client_id` | `bemfa_private`     | MQTT client identifier                             |
| `mqtt.server`    | `bemfa.com`         | MQTT broker host                                   |
| `mqtt.port`      | `9501`              | MQTT broker port (1–65535)                         |
| `mqtt.topic`     | `title`             | Topic to subscribe and publish on                  |

A missing file, invalid JSON, a field of the wrong type or an out-of-range
port stops the service at start-up with `配置加载失败: ...` and exit status 1.

## Running

```
xiaoai-wol
xiaoai-wol --config /etc/xiaoai.json
```

The HTTP server listens on the configured port on every interface. Open
`http://<host>:3030/` from a machine on the same private network. Stop it
with Ctrl-C; the MQTT connection is then closed.

## HTTP endpoints

All endpoints except `/xiaoai` answer only to private (10/8, 172.16/12,
192.168/16, fc00::/7) or loopback clients; other clients get `404`. Any
method is accepted, and any unknown path serves the panel.

| Path                | Purpose                                                     |
|---------------------|-------------------------------------------------------------|
| `/`                 | Web panel                                                   |
| `/wol`              | Send the magic packet, return a plain-text report           |
| `/top`              | CPU, memory, thread and garbage-collection information      |
| `/restart`          | Reboot the host about one second after responding           |
| `/toggle-debug`     | Toggle skill debug mode, returns `{"debug": true/false}`    |
| `/get-last-request` | `{"debug": ..., "data": ...}` with the last captured request |
| `/mqtt-status`      | MQTT enabled/connected state, topic, server and last status |
| `/xiaoai`           | Xiaoai skill webhook                                        |

`/xiaoai` requires an `Authorization` header starting with
`MIAI-HmacSHA256-V1 <xiaoai_key>::`; otherwise it answers `404`. A body that
is not valid JSON of the expected shape gets `400`. Launch requests are
greeted, "打开我的电脑" sends the magic packet and ends the session, other
intents get a "not understood" reply, and end requests say goodbye.

In debug mode `/xiaoai` does not act on requests; it records the time,
client address, headers and (pretty-printed if JSON) body so they can be
inspected from the panel. Turning debug mode off forgets the record.

## MQTT

MQTT is enabled whenever a broker and topic are configured (they always are
after defaults). The service connects in the background, retrying up to three
times five seconds apart, and subscribes to the topic with QoS 1.

Every message on the topic becomes the reported status. A message `on` sends
the magic packet and, five seconds later, publishes `off` back to the topic.
A lost connection is retried with exponential back-off (capped at 60
seconds); after three failed attempts the service waits 30 seconds and tries
again.

## Library use

The pieces can be used on their own:

```python
from xiaoai_wol.wol import magic_packet, parse_mac, broadcast_address, is_private_ip, wake_on_lan
from xiaoai_wol.config import load_config, Config
from xiaoai_wol.skill import SkillRequest, respond, is_authorized
from xiaoai_wol.sysinfo import cpu_usage, memory_info, system_info
from xiaoai_wol.server import create_server, DebugState

packet = magic_packet("00-00-5E-00-53-01")          # 102 bytes
broadcast_address("192.168.1.20", "255.255.255.0")  # "192.168.1.255"
print(wake_on_lan("00:00:5E:00:53:01"))             # sends on every private IPv4 interface

config = load_config("xiaoai.json")
reply = respond(SkillRequest(type=1, query="打开我的电脑"), wake=lambda: None)
print(reply.to_dict())

server = create_server(config, wake=lambda mac: "sent\n")
server.serve_forever()
```

`parse_mac` and `magic_packet` raise `InvalidMacError` for a malformed
address; `load_config` raises `ConfigError`. `MQTTManager` in
`xiaoai_wol.mqtt` raises `MQTTError` when connecting, subscribing or
publishing fails after its retries.

## Tests

```
pip install "xiaoai-wol[test]"
pytest
```