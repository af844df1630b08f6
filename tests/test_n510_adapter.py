"""Tests for the N510 adapter: CGI reset quirks and edge document uploads."""

import asyncio
import json

import aiohttp
import pytest
from aiohttp import web
from aiohttp import test_utils

from gateways.errors import GatewayUnavailableError
from gateways.models import FAILED, SAVED_UNVERIFIED, SAVED_VERIFIED
from gateways.n510 import N510Adapter, edge_counts
from http_helper import fetch_with_retry

FAST = {'request_timeout': 2, 'upload_timeout': 2, 'retry_attempts': 1, 'retry_delay_seconds': 0}

EDGE_DOCUMENT = {
    'stamp': 1,
    'ctable': [{'name': 'meter1', 'datas': [{'key': 'v_l1_1'}]}, {'name': 'meter2', 'datas': []}],
    'rtable': {
        'rules': [{'type': 1, 'period': 60}],
        'format': [{'topic': '/v1/gateway/telemetry', 'type': 1, 'template': {'v': 'v_l1_1', 'i': 'i_l1_1'}}],
        'datas': [{'key': 'v_l1_1'}],
    },
}


class FakeN510:
    """Stores uploaded edge documents; can be told to keep only part of them"""

    def __init__(self, keep_ctable=None, upload_reply='Upload OK', edge=None,
                 econfig=True, status_pages=True):
        self.keep_ctable = keep_ctable
        self.upload_reply = upload_reply
        self.edge = edge if edge is not None else {}
        self.econfig = econfig
        self.status_pages = status_pages
        self.uploads = []
        self.cgi = []

    def app(self):
        app = web.Application()
        app.router.add_post('/edge_model', self.edge_model)
        app.router.add_get('/edge.json', self.edge_json)
        app.router.add_get('/econfig.json', self.econfig_json)
        app.router.add_get('/econfig.cgi', self.record_cgi)
        app.router.add_get('/ipconfig.cgi', self.record_cgi)
        app.router.add_get('/mqttbase.cgi', self.record_cgi)
        app.router.add_get('/define.json', self.status_page)
        app.router.add_get('/temp.json', self.status_page)
        app.router.add_get('/ipconfig.json', self.status_page)
        return app

    async def edge_model(self, request):
        form = await request.post()
        part = form['file']
        content = part.file.read()
        self.uploads.append((part.filename, part.content_type, content))
        document = json.loads(content)
        if self.keep_ctable is not None:
            document['ctable'] = document['ctable'][:self.keep_ctable]
        self.edge = document
        return web.Response(text=self.upload_reply)

    async def edge_json(self, request):
        return web.json_response(self.edge)

    async def econfig_json(self, request):
        if not self.econfig:
            raise web.HTTPNotFound()
        return web.json_response({'inqu_en': 1, 'inqu_m': 0, 'inqu_t': '/Query', 'inqu_qos': 1})

    async def status_page(self, request):
        if not self.status_pages:
            raise web.HTTPNotFound()
        return web.json_response({'page': request.path.lstrip('/')})

    async def record_cgi(self, request):
        self.cgi.append((request.path, dict(request.query)))
        return web.Response(text='OK')


async def with_gateway(fake, scenario):
    server = test_utils.TestServer(fake.app())
    await server.start_server()
    try:
        adapter = N510Adapter(f"{server.host}:{server.port}", FAST, settle_seconds=0,
                              verify_attempts=2, verify_interval_seconds=0)
        return await scenario(adapter)
    finally:
        await server.close()


def resetting_client(adapter, calls):
    async def get_text(path, timeout=None, retry=True):
        calls.append((path, retry))
        raise GatewayUnavailableError(f"{adapter.host}: reset", connection_reset=True)

    adapter.client.get_text = get_text


class TestResetQuirk:
    @pytest.mark.parametrize('endpoint', ['port$.cgi', 'misc.cgi', 'econfig.cgi'])
    def test_reset_counts_as_success(self, endpoint):
        adapter = N510Adapter('192.168.1.57', FAST)
        calls = []
        resetting_client(adapter, calls)
        assert asyncio.run(adapter.write(endpoint, {'a': 1}))
        assert calls == [(f"{endpoint}?a=1", False)]

    def test_reset_on_other_endpoint_raises(self):
        adapter = N510Adapter('192.168.1.57', FAST)
        calls = []
        resetting_client(adapter, calls)
        with pytest.raises(GatewayUnavailableError):
            asyncio.run(adapter.write('ipconfig.cgi', {'staticip': 0}))
        assert calls[0][1] is True

    def test_timeout_on_quirk_endpoint_raises(self):
        adapter = N510Adapter('192.168.1.57', FAST)

        async def get_text(path, timeout=None, retry=True):
            raise GatewayUnavailableError("timeout")

        adapter.client.get_text = get_text
        with pytest.raises(GatewayUnavailableError):
            asyncio.run(adapter.write('misc.cgi', {'reboot': 1}))

    def test_reboot_tolerates_drop(self):
        adapter = N510Adapter('192.168.1.57', FAST)
        resetting_client(adapter, [])
        assert asyncio.run(adapter.reboot())


class TestRetry:
    def test_resets_retried(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise aiohttp.ServerDisconnectedError()
            return 'ok'

        assert asyncio.run(fetch_with_retry(flaky, attempts=3, delay_seconds=0)) == 'ok'
        assert len(attempts) == 3

    def test_other_errors_not_retried(self):
        attempts = []

        async def refused():
            attempts.append(1)
            raise aiohttp.ClientPayloadError('bad body')

        with pytest.raises(aiohttp.ClientPayloadError):
            asyncio.run(fetch_with_retry(refused, attempts=3, delay_seconds=0))
        assert len(attempts) == 1


class TestEdgeUpload:
    def test_blob_upload_verified(self):
        fake = FakeN510()
        result = asyncio.run(with_gateway(fake, lambda adapter: adapter.save_edge_config(EDGE_DOCUMENT)))
        assert result.status == SAVED_VERIFIED
        filename, content_type, content = fake.uploads[0]
        assert filename == 'blob'
        assert content_type == 'application/octet-stream'
        assert json.loads(content) == EDGE_DOCUMENT
        path, query = fake.cgi[0]
        assert path == '/econfig.cgi'
        assert query['edgeen'] == '1'
        assert query['inqu_t'] == '/Query'

    def test_capped_document_is_unverified(self):
        fake = FakeN510(keep_ctable=1)
        result = asyncio.run(with_gateway(fake, lambda adapter: adapter.save_edge_config(EDGE_DOCUMENT)))
        assert result.status == SAVED_UNVERIFIED
        assert result.details['expected']['ctable'] == 2
        assert result.details['actual']['ctable'] == 1
        assert result.details['first_check'] == SAVED_UNVERIFIED

    def test_rejected_upload(self):
        fake = FakeN510(upload_reply='Upload failed')
        result = asyncio.run(with_gateway(fake, lambda adapter: adapter.save_edge_config(EDGE_DOCUMENT)))
        assert result.status == FAILED
        assert fake.cgi == []

    def test_edge_counts(self):
        assert edge_counts(EDGE_DOCUMENT) == {'ctable': 2, 'template': 2, 'datas': 1}
        assert edge_counts(None) == {'ctable': 0, 'template': 0, 'datas': 0}


class TestEdgeComputing:
    def test_keeps_query_settings(self):
        fake = FakeN510()
        assert asyncio.run(with_gateway(fake, lambda adapter: adapter.enable_edge_computing()))
        path, query = fake.cgi[0]
        assert path == '/econfig.cgi'
        assert query == {'edgeen': '1', 'inqu_en': '1', 'inqu_m': '0', 'inqu_t': '/Query', 'inqu_qos': '1'}

    def test_defaults_when_econfig_unreadable(self):
        fake = FakeN510(econfig=False)
        asyncio.run(with_gateway(fake, lambda adapter: adapter.enable_edge_computing()))
        _, query = fake.cgi[0]
        assert query['edgeen'] == '1'
        assert query['inqu_t'] == '/QueryTopic'


class TestReportingInterval:
    def test_read_periodic_rule(self):
        fake = FakeN510(edge=EDGE_DOCUMENT)
        assert asyncio.run(with_gateway(fake, lambda adapter: adapter.get_reporting_interval())) == 60

    def test_no_rule(self):
        fake = FakeN510(edge={'ctable': []})
        assert asyncio.run(with_gateway(fake, lambda adapter: adapter.get_reporting_interval())) is None

    def test_rewrites_existing_rule(self):
        fake = FakeN510(edge=json.loads(json.dumps(EDGE_DOCUMENT)))
        result = asyncio.run(with_gateway(fake, lambda adapter: adapter.set_reporting_interval(30)))
        assert result.status == SAVED_VERIFIED
        uploaded = json.loads(fake.uploads[0][2])
        assert uploaded['rtable']['rules'] == [{'type': 1, 'period': 30}]
        assert len(uploaded['ctable']) == 2
        assert uploaded['stamp'] != EDGE_DOCUMENT['stamp']

    def test_creates_minimal_document(self):
        fake = FakeN510(edge={})
        result = asyncio.run(with_gateway(fake, lambda adapter: adapter.set_reporting_interval(15)))
        assert result.status == SAVED_VERIFIED
        uploaded = json.loads(fake.uploads[0][2])
        assert uploaded['ctable'] == []
        assert uploaded['rtable']['rules'] == [{'type': 1, 'period': 15}]
        assert uploaded['rtable']['format'][0]['topic'] == '/v1/gateway/telemetry'


class TestServices:
    def test_mqtt_config(self):
        fake = FakeN510()
        ok = asyncio.run(with_gateway(
            fake, lambda adapter: adapter.save_mqtt_config('gw1', 'meter', '10.0.0.5', 8883)))
        assert ok
        path, query = fake.cgi[0]
        assert path == '/mqttbase.cgi'
        assert query['mqtten'] == '1'
        assert query['cid'] == 'gw1'
        assert query['usr'] == 'meter'
        assert query['addr'] == '10.0.0.5'
        assert query['rpt'] == '8883'

    def test_full_status(self):
        status = asyncio.run(with_gateway(FakeN510(), lambda adapter: adapter.get_full_status()))
        assert status['connected'] is True
        assert status['define'] == {'page': 'define.json'}
        assert status['temp'] == {'page': 'temp.json'}
        assert status['ipconfig'] == {'page': 'ipconfig.json'}

    def test_full_status_disconnected(self):
        fake = FakeN510(status_pages=False)
        status = asyncio.run(with_gateway(fake, lambda adapter: adapter.get_full_status()))
        assert status['connected'] is False
        assert 'define' not in status
