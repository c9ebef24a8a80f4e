import unittest
from unittest.mock import MagicMock

import requests

from itembase.errors import NotFound, TransportError, Unauthorized
from itembase.transport import ROUTES, RemoteTransport


def _response(status_code=200, payload=None, malformed=False):
    response = MagicMock(status_code=status_code)
    if malformed:
        response.json.side_effect = ValueError("no JSON")
    else:
        response.json.return_value = payload
    return response


class RemoteTransportTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.session = MagicMock(spec=requests.Session)
        self.transport = RemoteTransport("http://remote:3001/api/", timeout=2.0, session=self.session)

    def test_every_operation_has_a_route(self):
        self.assertEqual(ROUTES["update_item"], ("PUT", "/data/{item_id}"))
        self.assertEqual(
            set(ROUTES),
            {"health", "login", "logout", "session", "fetch_data", "create_item", "update_item", "delete_item"},
        )

    def test_url_for_quotes_path_parameters(self):
        method, url = self.transport.url_for("delete_item", item_id="a/b c")
        self.assertEqual(method, "DELETE")
        self.assertEqual(url, "http://remote:3001/api/data/a%2Fb%20c")

    async def test_returns_data_member_and_sends_bearer(self):
        self.session.request.return_value = _response(payload={"data": [{"id": "1"}]})

        data = await self.transport.call("fetch_data", token="local_u1")

        self.assertEqual(data, [{"id": "1"}])
        self.session.request.assert_called_once_with(
            "GET",
            "http://remote:3001/api/data",
            json=None,
            headers={"Content-Type": "application/json", "Authorization": "Bearer local_u1"},
            timeout=2.0,
        )

    async def test_health_returns_whole_body(self):
        body = {"status": "ok", "timestamp": "t", "environment": "production"}
        self.session.request.return_value = _response(payload=body)
        self.assertEqual(await self.transport.call("health"), body)

    async def test_client_errors_map_to_domain_errors(self):
        self.session.request.return_value = _response(401, {"error": "Unauthorized"})
        with self.assertRaises(Unauthorized):
            await self.transport.call("fetch_data")

        self.session.request.return_value = _response(404, {"error": "Item not found"})
        with self.assertRaises(NotFound) as ctx:
            await self.transport.call("update_item", item_id="9", body={"status": "x"})
        self.assertEqual(ctx.exception.message, "Item not found")

    async def test_transit_failures_raise_transport_error(self):
        cases = [
            requests.ConnectionError("refused"),
            _response(500, {"error": "Internal server error"}),
            _response(200, malformed=True),
            _response(200, ["not", "a", "dict"]),
            _response(200, {"no": "data"}),
            _response(418, {"error": "teapot"}),
            _response(404, {"message": "missing error"}),
        ]
        for case in cases:
            if isinstance(case, Exception):
                self.session.request.side_effect = case
            else:
                self.session.request.side_effect = None
                self.session.request.return_value = case
            with self.subTest(case=case):
                with self.assertRaises(TransportError):
                    await self.transport.call("fetch_data")

    def test_close_closes_session(self):
        self.transport.close()
        self.session.close.assert_called_once_with()


if __name__ == "__main__":
    unittest.main()
