"""Tests for gateway family detection against fake HTTP gateways."""

import asyncio

from aiohttp import web
from aiohttp import test_utils

from discovery.models import GatewayFamily
from gateways.detector import detect_family, identify, probe_gateway

FAST = {'request_timeout': 2, 'retry_attempts': 1, 'retry_delay_seconds': 0}

N510_DEFINE = {'modename': 'USR-N510', 'ver': 'V1.0.9', 'usermac': 'D4AD20C00C5E'}
N720_STATUS = {'soft_ver': 'V1.0.3', 'mac': 'D4AD20C00C5F'}


def gateway_app(requests, define=None, status=None, define_delay=0.0, status_delay=0.0):
    """A gateway that answers only the probes it is given a document for"""

    async def handle_define(request):
        requests.append('define.json')
        await asyncio.sleep(define_delay)
        if define is None:
            raise web.HTTPNotFound()
        return web.json_response(define)

    async def handle_flex(request):
        requests.append(f"download_flex.cgi?name={request.query.get('name')}")
        await asyncio.sleep(status_delay)
        if status is None:
            raise web.HTTPNotFound()
        return web.json_response(status)

    app = web.Application()
    app.router.add_get('/define.json', handle_define)
    app.router.add_get('/download_flex.cgi', handle_flex)
    return app


async def with_gateway(app, scenario):
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        return await scenario(f"{server.host}:{server.port}")
    finally:
        await server.close()


class TestDetectFamily:
    def test_n510(self):
        requests = []
        app = gateway_app(requests, define=N510_DEFINE, status=N720_STATUS)
        family = asyncio.run(with_gateway(app, lambda host: detect_family(host, FAST)))
        assert family == GatewayFamily.N510
        assert requests == ['define.json']

    def test_n720_after_n510_probe_fails(self):
        requests = []
        app = gateway_app(requests, status=N720_STATUS)
        family = asyncio.run(with_gateway(app, lambda host: detect_family(host, FAST)))
        assert family == GatewayFamily.N720
        assert requests == ['define.json', 'download_flex.cgi?name=status']

    def test_hanging_probe_times_out_then_next_runs(self):
        requests = []
        app = gateway_app(requests, define=N510_DEFINE, status=N720_STATUS, define_delay=1.0)
        family = asyncio.run(with_gateway(app, lambda host: detect_family(host, FAST, timeout=0.3)))
        assert family == GatewayFamily.N720
        assert requests == ['define.json', 'download_flex.cgi?name=status']

    def test_document_without_marker_is_not_a_match(self):
        requests = []
        app = gateway_app(requests, define={'other': 1}, status={'soft_ver': ''})
        family = asyncio.run(with_gateway(app, lambda host: detect_family(host, FAST)))
        assert family == GatewayFamily.UNKNOWN

    def test_nothing_answers(self):
        app = gateway_app([])
        family, document = asyncio.run(with_gateway(app, lambda host: identify(host, FAST)))
        assert family == GatewayFamily.UNKNOWN
        assert document is None


class TestProbeGateway:
    def test_n510_identity(self):
        app = gateway_app([], define=N510_DEFINE)
        device = asyncio.run(with_gateway(app, lambda host: probe_gateway(host, gateway_config=FAST)))
        assert device.family == GatewayFamily.N510
        assert device.mac == 'D4-AD-20-C0-0C-5E'
        assert device.model == 'USR-N510'
        assert device.firmware == 'V1.0.9'
        assert device.discovery_method == 'http_probe'
        assert device.same_subnet is False

    def test_n720_identity(self):
        app = gateway_app([], status=N720_STATUS)
        device = asyncio.run(with_gateway(app, lambda host: probe_gateway(host, gateway_config=FAST)))
        assert device.family == GatewayFamily.N720
        assert device.mac == 'D4-AD-20-C0-0C-5F'
        assert device.model == 'N720'
        assert device.firmware == 'V1.0.3'

    def test_no_gateway(self):
        app = gateway_app([])
        assert asyncio.run(with_gateway(app, lambda host: probe_gateway(host, gateway_config=FAST))) is None
