import unittest

from fpt.errors import MalformedPayloadError
from fpt.gateway import UrlBuilder, random_tag
from fpt.http_utils import HttpResponse, encode_form, extract_cookie, normalize_proxy_url, with_query_params


class TestHttpUtils(unittest.TestCase):
    def test_with_query_params_merges(self) -> None:
        base = "https://example.com/api?x=1"
        url = with_query_params(base, {"x": "2", "y": "3"})
        self.assertIn("x=2", url)
        self.assertIn("y=3", url)

    def test_extract_cookie(self) -> None:
        cookies = ("locale=en; path=/", "PHPSESSID=abc123; path=/; HttpOnly")
        self.assertEqual(extract_cookie(cookies, "PHPSESSID"), "abc123")
        self.assertIsNone(extract_cookie(cookies, "golden_key"))

    def test_normalize_proxy_url(self) -> None:
        self.assertEqual(normalize_proxy_url("http://1.2.3.4:8080:u:p"), "http://u:p@1.2.3.4:8080")
        self.assertEqual(normalize_proxy_url("http://u:p@1.2.3.4:8080"), "http://u:p@1.2.3.4:8080")
        self.assertEqual(normalize_proxy_url("socks5://h:1"), "socks5://h:1")

    def test_encode_form_keeps_repeated_keys(self) -> None:
        body = encode_form([("a[]", ""), ("a[]", "on"), ("t", "x y")])
        self.assertEqual(body, b"a%5B%5D=&a%5B%5D=on&t=x+y")

    def test_response_json_errors_are_malformed(self) -> None:
        resp = HttpResponse(status=200, url="http://x", headers={}, body=b"<html>")
        with self.assertRaises(MalformedPayloadError):
            resp.json()

    def test_url_builder(self) -> None:
        urls = UrlBuilder("http://h")
        self.assertEqual(urls.runner(), "http://h/runner/")
        self.assertEqual(urls.chat_page("users-1-2"), "http://h/chat/?node=users-1-2")
        self.assertEqual(urls.offer_edit(7, 5), "http://h/lots/offerEdit?node=7&offer=5")
        self.assertEqual(urls.lots_trade(7), "http://h/lots/7/trade")
        self.assertEqual(urls.order_page("ABC"), "http://h/orders/ABC/")
        self.assertEqual(urls.lots_page(7), "http://h/lots/7/")

    def test_random_tag(self) -> None:
        tag = random_tag()
        self.assertEqual(len(tag), 10)
        self.assertTrue(tag.isalnum())
