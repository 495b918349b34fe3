import asyncio
import json

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from wallet_core.signing.digest_signer import LocalAccountSigner

# hardhat account #0
TEST_PRIVATE_KEY = (
    "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
)
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


class FakeEthNode:
    """JSON-RPC node stub. results maps method -> result, a dict with an
    "error" key is sent back as the rpc error object, a callable is called
    with the params."""

    def __init__(self):
        self.results = {}
        self.requests = []
        self.slow_methods = {}
        self.raw_responses = {}
        self.url = None

    def set_result(self, method, result):
        self.results[method] = result

    def set_error(self, method, code=-32000, message="execution reverted"):
        self.results[method] = {"error": {"code": code, "message": message}}

    def set_slow(self, method, delay):
        self.slow_methods[method] = delay

    def set_raw_response(self, method, body):
        self.raw_responses[method] = body

    def methods(self):
        return [request["method"] for request in self.requests]

    def params_of(self, method):
        for request in self.requests:
            if request["method"] == method:
                return request["params"]
        return None

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(body)
        method = body["method"]

        if method in self.slow_methods:
            await asyncio.sleep(self.slow_methods[method])
        if method in self.raw_responses:
            return web.Response(
                text=self.raw_responses[method],
                content_type="application/json",
            )

        response = {"jsonrpc": "2.0", "id": body["id"]}
        if method not in self.results:
            response["error"] = {
                "code": -32601,
                "message": f"the method {method} does not exist",
            }
        else:
            result = self.results[method]
            if callable(result):
                result = result(body["params"])
            if isinstance(result, dict) and "error" in result:
                response["error"] = result["error"]
            else:
                response["result"] = result
        return web.Response(
            text=json.dumps(response), content_type="application/json")


@pytest.fixture
def private_key() -> str:
    return TEST_PRIVATE_KEY


@pytest.fixture
def address() -> str:
    return TEST_ADDRESS


@pytest.fixture
def signer() -> LocalAccountSigner:
    return LocalAccountSigner(TEST_PRIVATE_KEY)


@pytest_asyncio.fixture
async def eth_node():
    node = FakeEthNode()
    app = web.Application()
    app.router.add_post("/", node.handle)
    server = TestServer(app)
    await server.start_server()
    node.url = str(server.make_url("/"))
    yield node
    await server.close()
