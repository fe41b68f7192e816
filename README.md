# apfsds

Server-side building blocks for a distributed proxy network. The package
provides the pieces a handler daemon is assembled from:

- `apfsds.auth`: HMAC-checked authentication requests with replay
  protection, and signed one-time tokens that can be used only once.
- `apfsds.key_rotation`: an Ed25519 key manager with scheduled or forced
  rotation and a grace period during which the previous key still verifies.
- `apfsds.geoip`: great-circle distance and selection of the nearest,
  weighted exit node for a client location.
- `apfsds.noise`: fake JSON responses, SSE keep-alives and random payloads
  used to blend proxy traffic with ordinary web traffic.
- `apfsds.emergency`: a monitor that watches the published versions of a
  package and schedules a shutdown when a trigger version shows up.
- `apfsds.billing`: per-user byte counters that are flushed periodically.
- `apfsds.connection_registry`: routing of return packets to live client
  connections.
- `apfsds.metrics`: counters, gauges and histograms rendered in the
  Prometheus text format, with a small HTTP server to expose them.
- `apfsds.management`: an HTTP management API with a dashboard, statistics
  and cluster membership endpoint.
- `apfsds.plugin`: a local socket that external plugins connect to.

Python 3.10 or later is required. The runtime dependencies are
`cryptography` and `aiohttp`; the `test` extra adds `pytest` and
`pytest-asyncio`.

## Choosing an exit node

```python
from apfsds.geoip import GeoExitNode, GeoLocation, haversine_distance, select_best_exit

nodes = [
    GeoExitNode(name="tokyo", endpoint="10.0.1.100:25347", weight=1.0,
                latitude=35.6762, longitude=139.6503),
    GeoExitNode(name="singapore", endpoint="10.0.1.101:25347", weight=1.0,
                latitude=1.3521, longitude=103.8198),
]
client = GeoLocation(country_code="CN", city="Shanghai",
                     latitude=31.2304, longitude=121.4737)

best = select_best_exit(nodes, client)
print(best.name)  # tokyo

print(haversine_distance(35.6762, 139.6503, 1.3521, 103.8198))  # about 5300 km
```

A node's score is its distance to the client divided by its weight; the
lowest score wins. When the client's location is unknown (latitude and
longitude both zero) the node with the highest weight is chosen, and an
empty node list gives `None`.

## Rotating signing keys

```python
from apfsds.key_rotation import KeyManager, KeyRotationConfig

manager = KeyManager(KeyRotationConfig())
signature = manager.sign(b"message")
assert manager.verify(b"message", signature)

manager.force_rotate()
if manager.should_rotate():
    new_public_key = manager.rotate()

# The old signature still verifies until the grace period ends.
assert manager.verify(b"message", signature)
manager.cleanup()
print(manager.status())
```

By default keys rotate every seven days and the previous key stays valid
for ten minutes after a rotation.

## One-time tokens

`Authenticator` in `apfsds.auth` checks an `AuthRequest` (timestamp within
30 seconds, fresh nonce, valid HMAC from `compute_hmac`) and returns the
user id taken from the request. `generate_token(user_id, nonce)` issues a
signed token; `verify_and_consume_token(token)` returns the user id the
first time and raises `TokenAlreadyUsed` on any later attempt. All failures
are subclasses of `AuthError`.

## Traffic noise

```python
from apfsds.noise import NoiseConfig, NoiseGenerator, generate_fake_json, generate_sse_event

print(generate_fake_json())   # e.g. b'{"type":"ping","ts":...}'
print(generate_sse_event())   # e.g. b': keepalive\n\n'

generator = NoiseGenerator(NoiseConfig())
if generator.should_inject():
    ...
```

`NoiseGenerator.start(sink)` runs in the background, feeding noise payloads
to `sink` at randomised intervals until `stop()` is called.

## Metrics

`Metrics` in `apfsds.metrics` holds the daemon's counters, gauges and
histograms; `render()` returns them in the Prometheus text exposition
format, and `start_server(metrics, bind, enabled)` serves that text over
HTTP.